import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mountain_guide.config import LOG_LEVEL
from mountain_guide.routers import chat, health

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Mountain Guide API")

# Add CORS middleware to allow frontend requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods
    allow_headers=["*"],  # Allows all headers
    expose_headers=["X-Total-Ms", "X-RateLimit-Remaining", "Retry-After"],
)

app.include_router(health.router) # health check endpoint (GET /health)
app.include_router(chat.router) # mountain recommendation chat (POST /api/chat) + candidate preview (GET /api/chat/candidates)
