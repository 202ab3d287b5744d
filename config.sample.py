# Sensibo AC Controller Configuration Template
# Rename this file to 'config.py'. Values are read from the environment,
# so you can keep secrets in a '.env' file next to it.

import os

from dotenv import load_dotenv

load_dotenv()

# Sensibo API Credentials
SENSIBO_API_KEY = os.getenv("SENSIBO_API_KEY", "")        # https://home.sensibo.com/me/api
SENSIBO_DEVICE_ID = os.getenv("SENSIBO_DEVICE_ID", "")    # Pod ID of your AC
SENSIBO_API_URL = os.getenv("SENSIBO_API_URL", "https://home.sensibo.com/api/v2")

# Temperature limits accepted by the hotkeys (°C)
MIN_TEMP = os.getenv("MIN_TEMP", "16")
MAX_TEMP = os.getenv("MAX_TEMP", "30")

# Retry policy for every AC command (seconds)
MAX_RETRIES = os.getenv("MAX_RETRIES", "3")
RETRY_DELAY = os.getenv("RETRY_DELAY", "2.0")
RETRY_MAX_DELAY = os.getenv("RETRY_MAX_DELAY", "10.0")
RETRY_JITTER = os.getenv("RETRY_JITTER", "1.0")
REQUEST_TIMEOUT = os.getenv("REQUEST_TIMEOUT", "5.0")

# Voice feedback
VOICE_VOLUME = os.getenv("VOICE_VOLUME", "100")     # 0-100
VOICE_TIMEOUT = os.getenv("VOICE_TIMEOUT", "15.0")  # kill speech after N seconds
VOICE_COMMAND = os.getenv("VOICE_COMMAND", "")      # e.g. "spd-say -e", empty = platform default

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "ac-controller.log")
