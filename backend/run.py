"""
BranchChat Backend Runner
Run with: python run.py
"""

import uvicorn
from branchchat.config import settings


if __name__ == "__main__":
    print(f"""
    BranchChat - branching chat with streaming generations

    Starting server at http://{settings.HOST}:{settings.PORT}

    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    # A single worker: the streaming-session registry is process-local
    uvicorn.run(
        "branchchat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
