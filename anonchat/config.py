import os
from dotenv import load_dotenv

load_dotenv()

BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip().replace('"', '').replace("'", "")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///anonchat.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
ADMIN_IDS = [int(x.strip()) for x in os.getenv("ADMIN_IDS", "").split(",") if x.strip().isdigit()]

# Настройки Webhook
WEBHOOK_DOMAIN = os.getenv("WEBHOOK_DOMAIN", "https://anon.example.com")
WEBHOOK_PATH = "/webhook"
WEBHOOK_URL = f"{WEBHOOK_DOMAIN}{WEBHOOK_PATH}"

# Настройки локального сервера (aiohttp)
WEBAPP_HOST = os.getenv("WEBAPP_HOST", "127.0.0.1")
WEBAPP_PORT = int(os.getenv("WEBAPP_PORT", "8085"))

# Политики матчмейкинга и модерации
BAN_THRESHOLD = int(os.getenv("BAN_THRESHOLD", "3"))              # жалоб до автобана
DAILY_NEXT_LIMIT = int(os.getenv("DAILY_NEXT_LIMIT", "5"))        # "следующий" в сутки без премиума
QUOTA_RESET_INTERVAL = int(os.getenv("QUOTA_RESET_INTERVAL", str(24 * 60 * 60)))  # секунды
SWEEP_INTERVAL = float(os.getenv("SWEEP_INTERVAL", "2"))
SWEEP_BATCH_SIZE = int(os.getenv("SWEEP_BATCH_SIZE", "50"))

AGE_MIN = 18
AGE_MAX = 99
