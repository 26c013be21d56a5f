#!/usr/bin/env python3
"""
Start script for the ContractLens FastAPI backend
"""

import sys
import os

# Add current directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    import uvicorn

    from contractlens.models.config import settings

    print("🚀 Starting ContractLens API...")
    print(f"📄 API Documentation: http://localhost:{settings.API_PORT}/docs")
    print(f"❤️  Health Check: http://localhost:{settings.API_PORT}/health")
    print(f"🗄️  Storage backend: {settings.STORAGE_BACKEND}, embeddings: {settings.EMBEDDING_PROVIDER}")
    print()

    uvicorn.run(
        "contractlens.api.app:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
