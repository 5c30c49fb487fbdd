from __future__ import annotations

import os

import uvicorn


def main() -> None:
    host = os.getenv("LOOKUP_SERVICE_HOST", "0.0.0.0")
    port = int(os.getenv("LOOKUP_SERVICE_PORT", "8110"))
    uvicorn.run("lookup_service.app:create_app", host=host, port=port, reload=False, factory=True)


if __name__ == "__main__":
    main()
