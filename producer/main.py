import uvicorn

from common.config import HOST, PORT
from producer.server import Server

server = Server()
app = server.app

if __name__ == "__main__":
    uvicorn.run("producer.main:app", host=HOST, port=PORT, reload=False)
