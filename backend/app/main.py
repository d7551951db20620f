from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from .env file in project root
# backend/app/main.py -> backend -> project root
env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(env_path)

from app.api.budget_routes import router as budget_router  # noqa: E402
from app.api.routes import router as api_router  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402

settings = get_settings()
setup_logging(settings.log_level)

app = FastAPI(title="Saldo API", version="0.1.0")

LOCALHOST_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

# Production only trusts the configured frontends; development also allows localhost
if settings.environment == "production":
    origins = list(settings.frontend_origins)
else:
    origins = [*LOCALHOST_ORIGINS, *settings.frontend_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(budget_router)
