from typing import Any

from voice_promptimiser.generation.sanitizer import sanitize

analysis_sys_msg = r"""You are an expert at analyzing AI agent prompts. Analyze the given prompt and extract key information.

Return a JSON object with these fields:
- intents: array of main purposes/goals of the agent
- constraints: array of rules/limitations the agent must follow
- expectedBehaviors: array of specific behaviors the agent should exhibit
- dataToCollect: array of information the agent should collect from users
- tone: the expected communication tone (e.g., "professional", "friendly", "formal")
- summary: a brief 1-2 sentence summary of what this agent does"""


CATEGORY_GUIDANCE: dict[str, str] = {
    "happy-path": """Generate HAPPY PATH tests that verify basic functionality:
- The customer completes the agent's main task without complications
- The customer asks about offered services and gets specific details
- The customer asks a common factual question the agent should know""",
    "edge-case": """Generate EDGE CASE tests that verify boundary conditions:
- The customer provides an invalid value (e.g. an impossible date) that should be caught
- The customer requests something outside business hours or on a closed day (should suggest an alternative)
- The customer asks about services without specifying which one""",
    "adversarial": """Generate ADVERSARIAL tests that verify robustness:
- The customer makes ambiguous requests that need clarification
- The customer asks about services in a confusing way
- The customer provides incomplete or contradictory information""",
    "compliance": """Generate COMPLIANCE tests that verify the agent respects its regulatory and policy constraints:
- The customer asks the agent to reveal or record information it must not handle
- The customer asks for advice the agent is not allowed to give""",
    "interruption": """Generate INTERRUPTION tests that verify the agent copes with a changing conversation:
- The customer changes their request midway through
- The customer abandons one task and starts another""",
    "clarification": """Generate CLARIFICATION tests that verify the agent asks good follow-up questions:
- The customer's request is missing required details
- The customer's wording could mean two different things""",
}


synthesis_sys_msg = r"""You are an expert QA engineer specializing in Voice AI testing.

{category_guidance}

BUSINESS CONTEXT:
{business_context}

IMPORTANT: Return a JSON object with this EXACT structure:
{{
  "testCases": [
    {{
      "name": "Test Name",
      "description": "What this test validates",
      "category": "{category}",
      "conversationScript": [
        {{"role": "user", "content": "User says this"}},
        {{"role": "expected-agent", "content": "Agent should respond like this"}}
      ],
      "successCriteria": [
        {{
          "name": "Criterion Name",
          "description": "What to check - be specific about what the agent should do",
          "type": "custom-judged",
          "evaluatorType": "llm",
          "weight": 1.0,
          "required": true
        }}
      ],
      "priority": "high",
      "tags": ["appointment"]
    }}
  ]
}}

CRITICAL RULES:
1. conversationScript MUST start with a "user" turn
2. Use ONLY "user" or "expected-agent" for role values
3. Make success criteria SPECIFIC and MEASURABLE
4. The weights of a test's success criteria must sum to 1.0, and a required criterion needs a weight of at least 0.5
5. Give each test case a distinct name
6. Return valid JSON only, no markdown"""


synthesis_user_msg = r"""Generate {count} {category} test cases for this Voice AI agent.

The agent's current capabilities based on prompt analysis:
- Summary: {summary}
- Intents: {intents}
- Constraints: {constraints}
- Expected Behaviors: {expected_behaviors}
- Data to Collect: {data_to_collect}
- Tone: {tone}

Generate realistic test conversations that a customer of this business might have."""


judge_sys_msg = r"""You are an expert evaluator for Voice AI agents. Evaluate the agent's responses using these metrics:

PERFORMANCE METRICS (score each 0-1):
1. relevance: Does the response address the user's actual question/need?
2. accuracy: Is the information provided correct? (services, prices, hours, dates)
3. completeness: Does the response include all necessary information?
4. helpfulness: Does the response help the user achieve their goal?

BUSINESS CONTEXT:
{business_context}

Return a JSON object with:
{{
  "passed": boolean (true if overall score >= 0.7),
  "score": number (average of all metrics, 0-1),
  "reasoning": "detailed explanation",
  "metrics": {{
    "relevance": number (0-1),
    "accuracy": number (0-1),
    "completeness": number (0-1),
    "helpfulness": number (0-1)
  }}
}}"""


judge_user_msg = r"""Evaluate this conversation:

CRITERION: {criterion_name}
DESCRIPTION: {criterion_description}
{instruction}
CONVERSATION:
{conversation}

Score each metric 0-1 and provide detailed reasoning."""


insights_sys_msg = r"""You are an expert at analyzing Voice AI agent test results. Identify patterns in failures and provide actionable recommendations.

Return a JSON object with:
- failurePatterns: array of identified patterns, each with description, affectedTestCases (array of test names), frequency (0-1), severity (critical/high/medium/low), and suggestedFix
- recommendations: array of general recommendations for improvement
- prioritizedFixes: array of fixes ordered by impact (most impactful first)"""


optimize_sys_msg = r"""You are an expert prompt engineer specializing in Voice AI agents. Your task is to improve the given prompt based on identified failure patterns.

The optimized prompt MUST stay faithful to this business:
{business_context}

Guidelines:
1. Make targeted changes that address specific failures
2. Include the concrete business details the agent needs (services, prices, hours, policies)
3. Give clear instructions for handling edge cases: invalid dates, closed days, ambiguous requests
4. Keep everything the current prompt already does well

Return a JSON object with:
- optimizedPrompt: the improved prompt
- changes: array of changes made, each with type (addition/modification/removal/restructure), description, targetedFailure, and optionally before/after
- explanation: overall explanation of the optimization strategy"""


optimize_user_msg = r"""Optimize this Voice AI agent prompt:

CURRENT PROMPT:
{current_prompt}

FAILURE PATTERNS:
{failure_patterns}

RECOMMENDATIONS:
{recommendations}

IMPORTANT: The optimized prompt must give the agent the specific facts and instructions it was missing in the failing tests."""


_CONTEXT_LABELS = {
    "name": "Business",
    "industry": "Industry",
    "use_case": "Use case",
    "audience": "Audience",
    "services": "Services",
    "working_hours": "Hours",
    "compliance": "Compliance",
    "policies": "Policies",
}


def render_business_context(business: dict[str, Any] | None) -> str:
    """Render agent business metadata as a sanitised bullet list for generator prompts."""
    if not business:
        return "- (no business context provided)"

    lines = []
    for key, value in business.items():
        label = _CONTEXT_LABELS.get(key, key.replace("_", " ").capitalize())
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        elif isinstance(value, dict):
            value = ", ".join(f"{k}: {v}" for k, v in value.items())
        lines.append(f"- {label}: {sanitize(str(value))}")
    return "\n".join(lines)


def numbered(items: list[str]) -> str:
    if not items:
        return "(none)"
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))
