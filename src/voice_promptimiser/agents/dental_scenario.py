from voice_promptimiser.agents.scenario import scenario_from_dict

_ASK_DATE_TIME = "I'd be happy to help you schedule an appointment! Could you please provide your preferred date and time?"
_GENERIC = "Thank you for reaching out! What can I help you with today?"

DENTAL_SCENARIO_DATA = {
    "name": "Bright Smile Dental Clinic",
    "initial_prompt": "You are a customer service agent.\n\nAnswer customer questions.\n\nBe helpful.",
    "metadata": {
        "voice": {"voice": "alloy", "speed": 1.0, "pitch": 1.0},
        "business": {
            "name": "Bright Smile Dental Clinic",
            "industry": "Healthcare",
            "use_case": "Appointment Scheduling",
            "audience": "Dental patients",
            "compliance": ["HIPAA"],
            "services": [
                "Cleanings ($99)",
                "Whitening ($299)",
                "Fillings ($150-$300)",
                "Root Canal ($800-$1200)",
                "Crowns ($900-$1500)",
                "Pediatric ($75-$200)",
                "Vaccinations (Flu $25, COVID Free)",
            ],
            "working_hours": "Mon-Fri 8AM-6PM, Sat 9AM-2PM, Sun CLOSED, Holidays CLOSED",
            "policies": [
                "Collect an email address for confirmations",
                "Validate dates (February has 28/29 days) and working days",
            ],
        },
    },
    "checks": [
        ["dental", "clinic", "bright smile"],
        ["cleaning", "whitening", "filling"],
        ["$", "price", "99"],
        ["monday", "hours", "8:00"],
        ["sunday", "closed", "holiday"],
        ["email", "confirm"],
        ["february", "invalid", "28"],
        ["clarif", "ambiguous", "what type"],
        ["vaccination", "flu", "covid"],
        {"min_length": 400},
    ],
    "rules": [
        {
            "name": "invalid-date",
            "triggers": ["february 30", "feb 30", "30/02", "30-02"],
            "good": (
                "I notice that February 30th isn't a valid date - February only has 28 or 29 days. "
                "Could you please provide a different date? I'd be happy to check our availability."
            ),
            "bad": _ASK_DATE_TIME,
        },
        {
            "name": "holiday",
            "triggers": ["january 1", "jan 1", "new year"],
            "good": (
                "I'm sorry, but January 1st is New Year's Day and our clinic is closed. We reopen on January 2nd. "
                "Would you like me to schedule your appointment for January 2nd instead? "
                "I have openings at 9:00 AM, 11:00 AM, and 2:00 PM."
            ),
            "bad": _ASK_DATE_TIME,
        },
        {
            "name": "sunday",
            "triggers": ["sunday"],
            "good": (
                "I'm sorry, but we're closed on Sundays. Our hours are Monday-Friday 8AM-6PM and "
                "Saturday 9AM-2PM. Would you like to schedule for Monday instead?"
            ),
            "bad": _ASK_DATE_TIME,
        },
        {
            "name": "services",
            "triggers": ["service", "offer", "what do you"],
            "good": (
                "At Bright Smile Dental Clinic, we offer:\n"
                "• Routine Cleanings - $99\n• Teeth Whitening - $299\n• Dental Fillings - $150-$300\n"
                "• Root Canal - $800-$1200\n• Crowns - $900-$1500\n• Pediatric Dentistry - $75-$200\n"
                "• Flu shots - $25\n• COVID-19 vaccines - Free\n\n"
                "Would you like to schedule an appointment for any of these services?"
            ),
            "bad": "We offer various services. What can I help you with today?",
        },
        {
            "name": "vaccination",
            "triggers": ["vaccination", "vaccine", "flu", "covid"],
            "good": (
                "Yes! We offer vaccinations:\n• Flu shots - $25\n• COVID-19 vaccines - Free\n\n"
                "Would you like to schedule a vaccination appointment?"
            ),
            "bad": _GENERIC,
        },
        {
            "name": "clarification",
            "requires": ["appointment"],
            "triggers": ["don't know", "what type", "what kind"],
            "good": (
                "No problem! Let me help you. What type of appointment do you need?\n"
                "1. Routine Cleaning & Checkup\n2. Teeth Whitening\n3. Dental Filling\n"
                "4. Emergency/Pain\n5. Consultation\n\nWhich one sounds closest to what you need?"
            ),
            "bad": _GENERIC,
        },
        {
            "name": "scheduling",
            "triggers": ["appointment", "schedule", "book"],
            "threshold": 0.6,
            "good": (
                "I'd be happy to help you schedule an appointment at Bright Smile Dental Clinic! "
                "What type of service do you need? We offer cleanings ($99), whitening ($299), fillings, and more. "
                "Once you let me know, I can check our availability."
            ),
            "bad": _ASK_DATE_TIME,
        },
        {
            "name": "confirmation",
            "triggers": ["monday", "tuesday", "next week"],
            "threshold": 0.6,
            "good": (
                "Great! I can schedule that for you. To confirm your appointment, I'll need:\n"
                "1. The specific service you need\n2. Your preferred time\n"
                "3. Your email address for confirmation\n\nCould you provide these details?"
            ),
            "bad": _GENERIC,
        },
    ],
    "default_good": (
        "Welcome to Bright Smile Dental Clinic! I can help you with:\n"
        "• Scheduling appointments\n• Information about our services and pricing\n"
        "• Vaccination appointments\n\nHow can I assist you today?"
    ),
    "default_bad": "Thank you for reaching out! I'm here to help. What can I assist you with today?",
}

DENTAL_SCENARIO = scenario_from_dict(DENTAL_SCENARIO_DATA)
