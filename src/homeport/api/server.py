from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from homeport.api.routers import info, storage
from homeport.config.settings import config

app = FastAPI(
    title="Homeport API",
    description="Disk discovery and RAID/ZFS provisioning for your home server.",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(info.router)
app.include_router(storage.router)
