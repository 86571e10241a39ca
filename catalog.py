"""Built-in gamification catalog: point awards, achievements, daily challenges, store items.

Inserted into the database by database.seed_catalog(); rows are keyed by name
so editing a definition here does not duplicate it.
"""

from __future__ import annotations

POINTS_PER_LEVEL = 500

POINT_AWARDS = {
    "note_upload": 25,
    "quiz_creation": 25,
    "paper_upload": 20,
    "daily_claim": 50,
}

# Total quiz attempts by a user that unlock quiz achievements.
QUIZ_ATTEMPT_ACHIEVEMENTS = {
    1: "complete_quiz",
    3: "quiz_streak",
    5: "quiz_champion",
}

# condition_type "points" unlocks automatically once total_points >= points_required;
# "event" achievements are unlocked by the action that earns them.
ACHIEVEMENTS = [
    {"name": "first_login", "title": "Welcome Aboard!", "description": "Log in to StudyPair for the first time",
     "icon": "party", "points_required": 0, "condition_type": "event", "rarity": "common"},
    {"name": "profile_complete", "title": "Profile Master", "description": "Complete your profile with all required information",
     "icon": "check", "points_required": 50, "condition_type": "event", "rarity": "common"},
    {"name": "first_note_upload", "title": "Knowledge Sharer", "description": "Upload your first note to help others",
     "icon": "books", "points_required": 100, "condition_type": "event", "rarity": "common"},
    {"name": "rookie", "title": "Rookie", "description": "Earn your first 100 points",
     "icon": "star", "points_required": 100, "condition_type": "points", "rarity": "common"},
    {"name": "social_starter", "title": "Social Starter", "description": "Send your first message to a study partner",
     "icon": "speech", "points_required": 50, "condition_type": "event", "rarity": "common"},
    {"name": "complete_quiz", "title": "Quiz Taker", "description": "Complete your first quiz attempt",
     "icon": "pencil", "points_required": 0, "condition_type": "event", "rarity": "common"},
    {"name": "quiz_streak", "title": "Practice Makes Perfect", "description": "Complete three quiz attempts",
     "icon": "repeat", "points_required": 0, "condition_type": "event", "rarity": "rare"},
    {"name": "quiz_creator", "title": "Quiz Creator", "description": "Create your first quiz",
     "icon": "question", "points_required": 200, "condition_type": "event", "rarity": "rare"},
    {"name": "daily_warrior", "title": "Daily Warrior", "description": "Stay active 7 days in a row",
     "icon": "flame", "points_required": 350, "condition_type": "event", "rarity": "rare"},
    {"name": "social_butterfly", "title": "Social Butterfly", "description": "Connect with 5 study partners",
     "icon": "butterfly", "points_required": 400, "condition_type": "event", "rarity": "rare"},
    {"name": "helpful_student", "title": "Helpful Student", "description": "Get 50 downloads on your notes",
     "icon": "hands", "points_required": 750, "condition_type": "event", "rarity": "rare"},
    {"name": "quiz_champion", "title": "Quiz Champion", "description": "Complete five quiz attempts",
     "icon": "trophy", "points_required": 2000, "condition_type": "event", "rarity": "epic"},
    {"name": "study_mentor", "title": "Study Mentor", "description": "Stay active 30 days in a row",
     "icon": "mortarboard", "points_required": 1500, "condition_type": "event", "rarity": "epic"},
    {"name": "knowledge_master", "title": "Knowledge Master", "description": "Reach 2,500 total points",
     "icon": "brain", "points_required": 2500, "condition_type": "points", "rarity": "epic"},
    {"name": "study_legend", "title": "Study Legend", "description": "Reach 10,000 total points through consistent contribution",
     "icon": "crown", "points_required": 10000, "condition_type": "points", "rarity": "legendary"},
]

# challenge_type names the activity type that advances the challenge.
DAILY_CHALLENGES = [
    {"name": "daily_study_login", "description": "Start your day by claiming your daily points",
     "challenge_type": "daily_claim", "target_value": 1, "points_reward": 10, "difficulty": "easy"},
    {"name": "browse_study_notes", "description": "Browse and view 3 study notes from peers",
     "challenge_type": "note_view", "target_value": 3, "points_reward": 20, "difficulty": "easy"},
    {"name": "complete_daily_quiz", "description": "Complete at least 1 quiz today",
     "challenge_type": "quiz", "target_value": 1, "points_reward": 25, "difficulty": "easy"},
    {"name": "peer_message", "description": "Send a helpful message to a study partner",
     "challenge_type": "message", "target_value": 1, "points_reward": 20, "difficulty": "easy"},
    {"name": "share_knowledge", "description": "Upload and share a study note with the community",
     "challenge_type": "note_upload", "target_value": 1, "points_reward": 50, "difficulty": "medium"},
    {"name": "community_helper", "description": "Comment on 2 study materials to help peers",
     "challenge_type": "comment", "target_value": 2, "points_reward": 40, "difficulty": "medium"},
    {"name": "quiz_creator", "description": "Create and publish a new quiz for peers",
     "challenge_type": "quiz_creation", "target_value": 1, "points_reward": 100, "difficulty": "hard"},
    {"name": "quiz_marathon", "description": "Complete 10 quizzes in a single day",
     "challenge_type": "quiz", "target_value": 10, "points_reward": 150, "difficulty": "hard"},
]

STORE_CATEGORIES = ["profile_border", "profile_badge", "profile_theme", "profile_title"]

# Profile column written when an item of the category is equipped, and its reset value.
EQUIP_FIELDS = {
    "profile_border": ("profile_border_color", "#e5e7eb"),
    "profile_badge": ("profile_badge", None),
    "profile_theme": ("profile_theme", "default"),
    "profile_title": ("profile_title", None),
}

STORE_ITEMS = [
    {"name": "Ocean Border", "description": "A calm blue profile border", "category": "profile_border",
     "price": 100, "rarity": "common", "value": "#3b82f6"},
    {"name": "Emerald Border", "description": "A bright green profile border", "category": "profile_border",
     "price": 150, "rarity": "common", "value": "#10b981"},
    {"name": "Golden Border", "description": "A shining gold profile border", "category": "profile_border",
     "price": 500, "rarity": "epic", "value": "#f59e0b"},
    {"name": "Bookworm Badge", "description": "Show off your love of reading", "category": "profile_badge",
     "price": 200, "rarity": "common", "value": "bookworm"},
    {"name": "Night Owl Badge", "description": "For late-night study sessions", "category": "profile_badge",
     "price": 300, "rarity": "rare", "value": "night_owl"},
    {"name": "Midnight Theme", "description": "A dark profile theme", "category": "profile_theme",
     "price": 400, "rarity": "rare", "value": "midnight"},
    {"name": "Sakura Theme", "description": "A soft pink profile theme", "category": "profile_theme",
     "price": 400, "rarity": "rare", "value": "sakura"},
    {"name": "Scholar Title", "description": "Display the Scholar title", "category": "profile_title",
     "price": 250, "rarity": "common", "value": "Scholar"},
    {"name": "Quiz Master Title", "description": "Display the Quiz Master title", "category": "profile_title",
     "price": 750, "rarity": "epic", "value": "Quiz Master"},
]
