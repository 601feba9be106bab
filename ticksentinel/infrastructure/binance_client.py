"""
TickSentinel – Binance WebSocket Client (ingestor de muestras)
===============================================================
Cliente WebSocket que se conecta al stream público de Binance, valida
cada mensaje y publica PriceSample / DepthSample en el EventBus.

MENSAJES ACEPTADOS (discriminador "e"):
  kline        → PriceSample (close, volumen, volumen taker buy)
  depthUpdate  → DepthSample (pares bid/ask)
  Cualquier otro mensaje (ack de SUBSCRIBE, etc.) se ignora.

RECONEXIÓN AUTOMÁTICA CON BACKOFF EXPONENCIAL:
- Ante cualquier desconexión el cliente espera base * 2^intento
  (capped a max_delay) + jitter aleatorio.
- Un flag `_running` permite shutdown limpio.

DATOS MALFORMADOS:
- Un mensaje que no valida se descarta y se loguea; la conexión sigue.
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from typing import Optional, Union

import websockets
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import ClientConnection

from ticksentinel.core.logging import get_logger
from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.samples import DepthSample, PriceSample
from ticksentinel.domain.exceptions import InvalidSampleError
from ticksentinel.infrastructure.event_bus import SAMPLES_TOPIC, EventBus

logger = get_logger("binance_client")

Sample = Union[PriceSample, DepthSample]


# ──────────────────────── Wire models ──────────────────────────────────

class _KlinePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    start_time: int = Field(alias="t")
    symbol: str = Field(alias="s", min_length=1)
    open: float = Field(alias="o", gt=0)
    close: float = Field(alias="c", gt=0)
    volume: float = Field(alias="v", ge=0)
    taker_buy_volume: float = Field(alias="V", ge=0)
    closed: bool = Field(default=False, alias="x")


class _KlineMessage(BaseModel):
    event_time: int = Field(alias="E")
    kline: _KlinePayload = Field(alias="k")


class _DepthMessage(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    event_time: int = Field(alias="E")
    symbol: str = Field(alias="s", min_length=1)
    bids: list[tuple[float, float]] = Field(alias="b")
    asks: list[tuple[float, float]] = Field(alias="a")


def parse_message(raw: Union[str, bytes, dict]) -> Optional[Sample]:
    """
    Convierte un mensaje del stream en una muestra.

    Returns:
        PriceSample | DepthSample, o None si el mensaje no es de datos.

    Raises:
        InvalidSampleError: mensaje de datos malformado.
    """
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except json.JSONDecodeError as e:
        raise InvalidSampleError("Mensaje no-JSON", payload=raw) from e
    if not isinstance(data, dict):
        raise InvalidSampleError("Mensaje no es un objeto", payload=raw)

    event_type = data.get("e")
    try:
        if event_type == "kline":
            k = _KlineMessage.model_validate(data).kline
            return PriceSample(
                symbol=k.symbol,
                price=k.close,
                open_price=k.open,
                volume=k.volume,
                taker_buy_volume=min(k.taker_buy_volume, k.volume),
                timestamp=k.start_time,
            )
        if event_type == "depthUpdate":
            d = _DepthMessage.model_validate(data)
            return DepthSample(
                symbol=d.symbol,
                bids=tuple(d.bids),
                asks=tuple(d.asks),
                timestamp=d.event_time,
            )
    except PydanticValidationError as e:
        raise InvalidSampleError(f"{event_type} inválido: {e.errors()[:1]}", payload=data) from e
    return None


class BinanceStreamClient:
    """
    Cliente WebSocket asíncrono para Binance.

    Ciclo de vida (como unidad del supervisor):
      1. run()   → loop de reconexión perpetua con backoff
      2. _listen() → parsear mensajes y publicar muestras
      3. stop()  → shutdown limpio (cierra el socket)
    """

    def __init__(self, event_bus: EventBus, settings: Settings) -> None:
        self._event_bus = event_bus
        self._settings = settings
        self._ws: Optional[ClientConnection] = None
        self._running = False
        self._reconnect_attempt = 0

        # Estadísticas de monitoreo
        self._samples_received: int = 0
        self._samples_dropped: int = 0
        self._last_sample_time: int = 0
        self._connected_since: float = 0.0

    # ──────────────────────── Lifecycle ──────────────────────────────────

    async def run(self) -> None:
        """Loop principal de reconexión. Termina cuando se llama stop()."""
        self._running = True
        logger.info("BinanceStreamClient iniciado (%s)", ", ".join(self._settings.symbols))

        while self._running:
            try:
                logger.info("Conectando a Binance: %s", self._settings.binance_ws_url)
                async with websockets.connect(
                    self._settings.binance_ws_url,
                    close_timeout=10,
                    max_size=2**20,
                ) as ws:
                    self._ws = ws
                    self._reconnect_attempt = 0
                    self._connected_since = time.time()
                    logger.info("✓ Conectado a Binance WebSocket")

                    await self._subscribe(ws)
                    await self._listen(ws)

            except websockets.exceptions.ConnectionClosed as e:
                logger.warning("Conexión cerrada: %s", e)
            except OSError as e:
                logger.error("Error de red: %s", e)
            finally:
                self._ws = None

            if not self._running:
                break

            # ── Backoff exponencial con jitter ──
            delay = min(
                self._settings.ws_reconnect_base_delay * (2 ** self._reconnect_attempt),
                self._settings.ws_reconnect_max_delay,
            )
            total_delay = delay + random.uniform(0, delay * 0.3)
            self._reconnect_attempt += 1
            logger.info(
                "Reconectando en %.1fs (intento #%d)...",
                total_delay, self._reconnect_attempt,
            )
            await asyncio.sleep(total_delay)

        logger.info(
            "BinanceStreamClient detenido. Muestras recibidas: %d (descartadas: %d)",
            self._samples_received, self._samples_dropped,
        )

    async def stop(self) -> None:
        """Shutdown limpio: cerrar el socket; run() sale de su loop."""
        self._running = False
        if self._ws is not None:
            await self._ws.close()

    # ──────────────────────── Subscribe ─────────────────────────────────

    def subscription_params(self) -> list[str]:
        params = []
        for symbol in self._settings.symbols:
            lower = symbol.lower()
            params.append(f"{lower}@kline_{self._settings.kline_interval}")
            if self._settings.subscribe_depth:
                params.append(f"{lower}@depth")
        return params

    async def _subscribe(self, ws: ClientConnection) -> None:
        params = self.subscription_params()
        await ws.send(json.dumps({"method": "SUBSCRIBE", "params": params, "id": 1}))
        logger.info("Suscrito a %s", ", ".join(params))

    # ──────────────────────── Listener ──────────────────────────────────

    async def _listen(self, ws: ClientConnection) -> None:
        async for raw_msg in ws:
            if not self._running:
                break
            await self.handle_message(raw_msg)

    async def handle_message(self, raw_msg: Union[str, bytes]) -> Optional[Sample]:
        """Parsea un mensaje y publica la muestra. Descarta los malformados."""
        try:
            sample = parse_message(raw_msg)
        except InvalidSampleError as e:
            self._samples_dropped += 1
            logger.warning("Muestra descartada: %s", e.message)
            return None

        if sample is None:
            return None

        self._samples_received += 1
        self._last_sample_time = sample.timestamp
        await self._event_bus.publish(SAMPLES_TOPIC, sample)
        return sample

    # ──────────────────────── Stats ─────────────────────────────────────

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self._ws is not None,
            "samples_received": self._samples_received,
            "samples_dropped": self._samples_dropped,
            "last_sample_time": self._last_sample_time,
            "connected_since": self._connected_since,
            "reconnect_attempts": self._reconnect_attempt,
        }
