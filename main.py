import os

import uvicorn

from server.api import app

HOST = os.getenv("HOST", "").strip() or "0.0.0.0"
PORT = int(os.getenv("PORT", "").strip() or "8000")


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)
