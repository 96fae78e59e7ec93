"""Tensor runtime wrappers and the process-wide resource context."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Protocol, TypeVar

import numpy as np
from loguru import logger

from .errors import ModelLoadError

T = TypeVar("T")


class TensorRuntime(Protocol):
    """Runs one model: a float32 tensor in, its first output tensor out."""

    def run(self, tensor: np.ndarray) -> np.ndarray:
        ...


class OnnxModel:
    """onnxruntime session bound to a single model file."""

    def __init__(self, path: Path, providers: Optional[List[str]] = None) -> None:
        try:
            import onnxruntime as ort
        except ImportError as exc:  # pragma: no cover
            raise ModelLoadError("onnxruntime is not installed") from exc

        if not path.exists():
            raise ModelLoadError(f"model file not found: {path}")
        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        try:
            self._session = ort.InferenceSession(
                str(path), sess_options=options, providers=providers or ["CPUExecutionProvider"]
            )
        except Exception as exc:
            raise ModelLoadError(f"failed to create session for {path}: {exc}") from exc
        self.path = path
        self.input_name = self._session.get_inputs()[0].name
        self.output_name = self._session.get_outputs()[0].name
        logger.info(
            "Loaded {} (input {} {}, output {})",
            path.name,
            self.input_name,
            self._session.get_inputs()[0].shape,
            self.output_name,
        )

    def run(self, tensor: np.ndarray) -> np.ndarray:
        outputs = self._session.run([self.output_name], {self.input_name: tensor.astype(np.float32)})
        return np.asarray(outputs[0])

    def input_shape(self, default: List[int]) -> List[int]:
        """Static input shape, with symbolic dimensions replaced from ``default``."""
        shape = self._session.get_inputs()[0].shape
        if len(shape) != len(default):
            return list(default)
        return [dim if isinstance(dim, int) and dim > 0 else fallback for dim, fallback in zip(shape, default)]

    def describe(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "inputs": [(i.name, i.shape) for i in self._session.get_inputs()],
            "outputs": [(o.name, o.shape) for o in self._session.get_outputs()],
            "providers": self._session.get_providers(),
        }


async def run_model(model: TensorRuntime, tensor: np.ndarray) -> np.ndarray:
    """Run inference off the event loop thread."""
    return await asyncio.to_thread(model.run, tensor)


class LazyResource(Generic[T]):
    """Create a resource once, on first use.

    Concurrent ``get()`` calls made while the first initialization is still
    running await that same initialization. A failed initialization is not
    remembered, so a later ``get()`` retries.
    """

    def __init__(self, name: str, factory: Callable[[], Awaitable[T]]) -> None:
        self.name = name
        self._factory = factory
        self._value: Optional[T] = None
        self._ready = False
        self._pending: Optional[asyncio.Future[T]] = None

    @property
    def ready(self) -> bool:
        return self._ready

    def peek(self) -> Optional[T]:
        return self._value if self._ready else None

    async def get(self) -> T:
        if self._ready:
            return self._value  # type: ignore[return-value]
        if self._pending is None:
            logger.debug("Initializing {}", self.name)
            self._pending = asyncio.ensure_future(self._factory())
        pending = self._pending
        try:
            value = await asyncio.shield(pending)
        except BaseException:
            if self._pending is pending and pending.done():
                self._pending = None
            raise
        self._value = value
        self._ready = True
        self._pending = None
        return value

    def reset(self) -> Optional[T]:
        """Forget the resource (returning it) so the next ``get()`` recreates it."""
        value = self._value
        self._value = None
        self._ready = False
        self._pending = None
        return value


class RuntimeContext:
    """Process-wide holder of lazily created, shared heavy resources.

    Components receive the context explicitly instead of reaching for
    module-level globals.
    """

    def __init__(self) -> None:
        self._resources: Dict[str, LazyResource[Any]] = {}

    def register(self, name: str, factory: Callable[[], Awaitable[T]]) -> LazyResource[T]:
        if name in self._resources:
            return self._resources[name]
        resource: LazyResource[T] = LazyResource(name, factory)
        self._resources[name] = resource
        return resource

    def resource(self, name: str) -> LazyResource[Any]:
        return self._resources[name]

    async def get(self, name: str) -> Any:
        return await self._resources[name].get()

    def status(self) -> Dict[str, bool]:
        return {name: res.ready for name, res in self._resources.items()}

    async def aclose(self) -> None:
        for res in self._resources.values():
            value = res.reset()
            close = getattr(value, "aclose", None)
            if close is not None:
                await close()
