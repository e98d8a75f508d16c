import argparse
import os


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="RecruitFlow Backend")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--database-url", type=str, help="SQLAlchemy database URL")
    parser.add_argument("--preferences", type=str, help="Path to the preferences JSON file")

    args = parser.parse_args()

    # Settings are read from the environment when the app module is imported
    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
    if args.preferences:
        os.environ["PREFERENCES_PATH"] = args.preferences

    uvicorn.run(
        "recruitflow.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
