import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _optional_flag(name):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


# Exam configuration
EXAM_CONFIG = {
    'student_name': os.getenv('STUDENT_NAME', 'Abduraxmatov Abdulaziz'),
    'variant': os.getenv('EXAM_VARIANT', 'ielts_academic'),
    'dev_mode': os.getenv('APP_ENV', 'production') == 'development' or _flag('EXAM_DEV_MODE'),
    'tick_interval': float(os.getenv('TIMER_TICK_SECONDS', '1')),
    'grace_delay': float(os.getenv('NOTIFY_GRACE_SECONDS', '3')),
    'zero_score_band': float(os.getenv('ZERO_SCORE_BAND', '0')),
    # None keeps the variant's own policy
    'writing_in_overall': _optional_flag('INCLUDE_WRITING_IN_OVERALL'),
}

# Telegram relay
TELEGRAM_CONFIG = {
    'bot_token': os.getenv('TELEGRAM_BOT_TOKEN', ''),
    'chat_id': os.getenv('TELEGRAM_CHAT_ID', ''),
    'api_url': os.getenv('TELEGRAM_API_URL', 'https://api.telegram.org'),
    'timeout': float(os.getenv('TELEGRAM_TIMEOUT', '10')),
}

# Database configuration
DB_CONFIG = {
    'host': os.getenv('DB_HOST', 'localhost'),
    'user': os.getenv('DB_USER', 'root'),
    'password': os.getenv('DB_PASSWORD', ''),
    'database': os.getenv('DB_NAME', 'ielts_mock'),
    'pool_name': 'ielts_pool',
    'pool_size': 5
}

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

SESSION_COOKIE = 'test_session'
SESSION_MAX_AGE = 7200  # 2 hours
