"""
Configuração e utilitários compartilhados
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone, timedelta
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Carregar .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'rental_energia')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Webhook de automação (Zapier -> Clicksign). Vazio = desativado
CLICKSIGN_WEBHOOK_URL = os.environ.get('CLICKSIGN_WEBHOOK_URL', '')

# Armazenamento de arquivos (contratos gerados)
STORAGE_DIR = Path(os.environ.get('STORAGE_DIR', str(ROOT_DIR / 'storage')))
CONTRACT_TEMPLATES_DIR = Path(os.environ.get('CONTRACT_TEMPLATES_DIR', str(ROOT_DIR / 'templates')))

SESSION_DAYS = int(os.environ.get('SESSION_DAYS', '7'))

SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'false').lower() == 'true'
SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'America/Sao_Paulo')


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash de senha com SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Gera um token de sessão seguro"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Data/hora atual em ISO (UTC)"""
    return datetime.now(timezone.utc).isoformat()

def today_iso() -> str:
    """Data atual (UTC) no formato YYYY-MM-DD"""
    return datetime.now(timezone.utc).date().isoformat()

def session_expiry_iso() -> str:
    """Expiração de uma nova sessão"""
    return (datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)).isoformat()
