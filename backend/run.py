import os
import uvicorn

if __name__ == "__main__":
    is_dev = os.environ.get("ENVIRONMENT", "development").lower() != "production"
    # The in-process daily timer must live in exactly one worker
    scheduler_enabled = os.environ.get("SCHEDULER_ENABLED", "false").lower() in ("1", "true", "yes")
    workers = 1 if is_dev or scheduler_enabled else int(os.environ.get("WEB_CONCURRENCY", 4))
    uvicorn.run(
        "brandpulse.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=is_dev,
        workers=workers,
    )
