# node_agent/server.py
"""
Node Agent - Runs on compute nodes.
Reports capacity, handles admission and stores task payloads.
"""

import hashlib
import logging
import os
from threading import Lock
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from node_agent.settings import AgentSettings, agent_settings

logger = logging.getLogger(__name__)


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class NodeInfoResponse(BaseModel):
    """Node information response."""
    node_id: str
    total_capacity: float
    used_capacity: float
    admitted: bool
    is_primary: bool
    is_elastic: bool
    is_eligible: bool
    neighbors: List[str]
    payloads: List[str]


class AdmissionRequest(BaseModel):
    """Admission request."""
    token: Optional[str] = None


class AdmissionResponse(BaseModel):
    node_id: str
    admitted: bool


class PayloadUpload(BaseModel):
    """Payload upload body."""
    content: str = Field(..., description="Payload file contents")


class PayloadInfo(BaseModel):
    name: str
    size: int
    sha256: str


# ============================================
# AGENT STATE
# ============================================

class NodeState:
    """Mutable state of this node (admission flag, payload directory)."""

    def __init__(self, settings: AgentSettings):
        self.settings = settings
        self.admitted = settings.admitted
        self._lock = Lock()

    def admit(self, token: Optional[str]) -> bool:
        expected = self.settings.admission_token
        if expected is not None and token != expected:
            return False
        with self._lock:
            self.admitted = True
        return True

    def payload_path(self, name: str) -> str:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"Invalid payload name: {name!r}")
        return os.path.join(self.settings.payload_dir, name)

    def list_payloads(self) -> List[str]:
        if not os.path.isdir(self.settings.payload_dir):
            return []
        return sorted(
            entry for entry in os.listdir(self.settings.payload_dir)
            if os.path.isfile(os.path.join(self.settings.payload_dir, entry))
        )

    def payload_info(self, name: str) -> Optional[PayloadInfo]:
        path = self.payload_path(name)
        if not os.path.isfile(path):
            return None
        with open(path, "rb") as f:
            data = f.read()
        return PayloadInfo(name=name, size=len(data), sha256=hashlib.sha256(data).hexdigest())

    def store_payload(self, name: str, content: str) -> PayloadInfo:
        path = self.payload_path(name)
        os.makedirs(self.settings.payload_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return self.payload_info(name)


# ============================================
# APPLICATION
# ============================================

def create_app(settings: AgentSettings = agent_settings) -> FastAPI:
    app = FastAPI(
        title="Node Agent",
        description="Capacity and payload agent for the orchestrator",
        version="1.0.0"
    )
    state = NodeState(settings)
    app.state.node = state

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "node_id": settings.node_id,
        }

    @app.get("/info", response_model=NodeInfoResponse)
    async def get_node_info():
        """Get node information."""
        return NodeInfoResponse(
            node_id=settings.node_id,
            total_capacity=settings.total_capacity,
            used_capacity=min(settings.used_capacity, settings.total_capacity),
            admitted=state.admitted,
            is_primary=settings.is_primary,
            is_elastic=settings.is_elastic,
            is_eligible=settings.is_eligible,
            neighbors=list(settings.neighbors),
            payloads=state.list_payloads(),
        )

    @app.post("/admission", response_model=AdmissionResponse)
    async def request_admission(request: AdmissionRequest):
        """Admit this node into the capacity pool."""
        if not state.admit(request.token):
            logger.warning(f"[{settings.node_id}] Admission refused: bad token")
            raise HTTPException(status_code=403, detail="Admission refused")

        logger.info(f"[{settings.node_id}] ✅ Node admitted")
        return AdmissionResponse(node_id=settings.node_id, admitted=True)

    @app.get("/payloads/{name}", response_model=PayloadInfo)
    async def get_payload(name: str):
        try:
            info = state.payload_info(name)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if info is None:
            raise HTTPException(status_code=404, detail="Payload not found")
        return info

    @app.put("/payloads/{name}", response_model=PayloadInfo)
    async def put_payload(name: str, upload: PayloadUpload):
        try:
            info = state.store_payload(name, upload.content)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            logger.error(f"[{settings.node_id}] Failed to store payload {name}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        logger.info(f"[{settings.node_id}] Stored payload {name} ({info.size} bytes)")
        return info

    return app


app = create_app()
