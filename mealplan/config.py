import os
import secrets

# Flask secret key, used for session signing and CSRF token generation.
# Set SECRET_KEY in the environment for production; a random key is
# generated on startup otherwise (sessions won't survive restarts).
SECRET_KEY = os.environ.get("SECRET_KEY", secrets.token_hex(32))

# Directory holding the JSON collections (recipes, history, plans, ...)
DATA_DIR = os.environ.get("MEALPLAN_DATA_DIR", "data")

LOG_LEVEL = os.environ.get("MEALPLAN_LOG_LEVEL", "INFO")

# Meal categories a fresh user starts with, and how many of each a
# generated week asks for.
DEFAULT_MEAL_CATEGORIES = ["chicken", "beef", "lamb", "turkey", "vegetarian"]
DEFAULT_SELECTION = {"chicken": 2, "beef": 1, "turkey": 1}

# Recipes made within this many days are skipped by the generator.
DEFAULT_HISTORY_EXCLUSION_DAYS = 10

# 0 = Sunday ... 6 = Saturday; plans start on Monday unless configured.
DEFAULT_WEEK_START_DAY = 1

# Rate limit applied to plan / shopping list generation endpoints.
GENERATE_RATE_LIMIT = "30 per minute"
