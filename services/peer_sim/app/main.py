import asyncio
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import RedirectResponse, StreamingResponse
from pydantic import BaseModel, Field

from services.peer_sim.app.core.faults import FaultConfig

HTTP_HOST = os.getenv("SIM_HTTP_HOST", "127.0.0.1")
HTTP_PORT = int(os.getenv("SIM_HTTP_PORT", "8000"))

UDP_HOST = os.getenv("SIM_UDP_HOST", "127.0.0.1")
UDP_PORT = int(os.getenv("SIM_UDP_PORT", "0"))

FAULTS = FaultConfig()


class UdpEcho(asyncio.DatagramProtocol):
    def connection_made(self, transport):
        # required: stored transport for later sendto()
        self.transport = transport

    def datagram_received(self, data: bytes, addr):
        if FAULTS.should_drop():
            return

        delay = FAULTS.delay_s()
        if delay > 0:
            asyncio.get_running_loop().call_later(delay, self.transport.sendto, data, addr)
        else:
            self.transport.sendto(data, addr)


@asynccontextmanager
async def lifespan(app: FastAPI):
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        UdpEcho,
        local_addr=(UDP_HOST, UDP_PORT),
    )
    app.state.udp_transport = transport
    try:
        yield
    finally:
        transport.close()


app = FastAPI(title="Peer Simulator", version="0.1.0", lifespan=lifespan)


class FaultsIn(BaseModel):
    delay_ms: int = Field(0, ge=0, le=5000)
    drop_rate: float = Field(0.0, ge=0.0, le=1.0)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.api_route("/echo", methods=["GET", "POST", "PUT", "DELETE"])
async def echo(request: Request):
    body = await request.body()
    return {
        "method": request.method,
        "headers": dict(request.headers),
        "body": body.decode("utf-8", errors="replace"),
    }


@app.get("/bytes/{n}")
def fixed_bytes(n: int):
    payload = bytes(i % 256 for i in range(n))
    return Response(content=payload, media_type="application/octet-stream")


@app.get("/redirect/bytes/{n}")
def redirect_bytes(n: int):
    return RedirectResponse(url=f"/bytes/{n}")


@app.get("/chunked")
def chunked():
    def parts():
        yield b"first,"
        yield b"second"
    # no Content-Length: the body is sent chunked
    return StreamingResponse(parts(), media_type="text/plain")


@app.post("/control/reset")
def reset():
    FAULTS.reset()
    return {"status": "reset"}


@app.post("/control/faults")
def set_faults(f: FaultsIn):
    FAULTS.delay_ms = f.delay_ms
    FAULTS.drop_rate = f.drop_rate
    return {"status": "faults_updated", "faults": f.model_dump()}


@app.get("/control/faults")
def get_faults():
    return {
        "delay_ms": FAULTS.delay_ms,
        "drop_rate": FAULTS.drop_rate,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=HTTP_HOST,
        port=HTTP_PORT,
        reload=False)
