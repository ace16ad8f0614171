import uvicorn

from classbooking.config import PORT
from classbooking.main import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT)
