"""Rule-based wellness assistant. Keyword lookup only; no medical advice."""
import random
from datetime import datetime
from typing import Dict, List, Optional

RESPONSES: Dict[str, List[str]] = {
    "stress": [
        "Stress is normal, but it's important to manage it. Try deep breathing exercises: inhale for 4 seconds, hold for 7, exhale for 8.",
        "Regular physical activity can help reduce stress. Even a 10-minute walk can make a difference.",
        "Consider mindfulness meditation - just 5 minutes a day can help calm your mind.",
    ],
    "tired": [
        "Fatigue can be a sign of dehydration. Make sure you're drinking enough water throughout the day.",
        "Consider your sleep quality. Adults typically need 7-9 hours of quality sleep each night.",
        "Iron-rich foods like spinach, lentils, and lean meats can help combat fatigue.",
    ],
    "sleep": [
        "Maintain a consistent sleep schedule, even on weekends. This helps regulate your body's internal clock.",
        "Create a relaxing bedtime routine - avoid screens for at least an hour before bed.",
        "Make sure your bedroom is cool, dark, and quiet for optimal sleep conditions.",
    ],
    "hydration": [
        "Aim for 8 glasses of water daily, but your needs may vary based on activity level and climate.",
        "If you struggle to drink enough water, try adding slices of lemon, cucumber, or berries for flavor.",
        "Remember that fruits and vegetables also contribute to your daily hydration needs.",
    ],
    "exercise": [
        "The World Health Organization recommends 150 minutes of moderate exercise per week.",
        "Find activities you enjoy - you're more likely to stick with exercise if it's fun for you.",
        "Remember to warm up before exercise and cool down afterward to prevent injury.",
    ],
    "mental": [
        "It's okay to ask for help when you need it. Talking to someone can make a big difference.",
        "Practice gratitude by noting three things you're thankful for each day.",
        "Set realistic goals and celebrate small achievements along the way.",
    ],
    "general": [
        "A balanced diet with plenty of fruits, vegetables, and whole grains supports overall health.",
        "Regular check-ups are important for preventive care. Don't skip your annual physical.",
        "Social connections are vital for mental wellness. Make time for friends and family.",
    ],
}

# Checked in order; first match wins
KEYWORDS: List[tuple] = [
    ("stress", ["stress", "anxious", "overwhelmed", "pressure"]),
    ("tired", ["tired", "fatigue", "exhausted", "low energy"]),
    ("sleep", ["sleep", "insomnia", "sleepless", "restless"]),
    ("hydration", ["hydration", "water", "dehydrated", "thirsty"]),
    ("exercise", ["exercise", "workout", "fitness", "active"]),
    ("mental", ["mental", "depress", "anxiety", "mood", "emotional"]),
]

DISCLAIMER = (
    "\n\n⚠️ **Disclaimer:** I am a wellness assistant providing general information only. "
    "I cannot provide medical advice. Please consult with a healthcare professional for medical concerns."
)

INTRO = {
    "message": (
        "Hello! I'm your Wellness Assistant. I can provide general wellness tips about stress, sleep, "
        "hydration, exercise, and mental health. What would you like to talk about today?"
    ),
    "capabilities": [
        "General wellness and lifestyle tips",
        "Stress management techniques",
        "Sleep improvement suggestions",
        "Hydration reminders",
        "Exercise recommendations",
        "Mental wellness guidance",
    ],
    "disclaimer": (
        "⚠️ IMPORTANT: I cannot provide medical advice, diagnosis, or treatment recommendations. "
        "Please consult healthcare professionals for medical concerns."
    ),
}


def match_category(message: str) -> str:
    text = message.lower()
    for category, keys in KEYWORDS:
        if any(k in text for k in keys):
            return category
    return "general"


def respond(message: str, rng: Optional[random.Random] = None) -> Dict[str, str]:
    category = match_category(message)
    choice = (rng or random).choice(RESPONSES[category])
    return {
        "response": choice + DISCLAIMER,
        "category": category,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
