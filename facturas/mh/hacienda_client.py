"""
FACTURAS-SV — HaciendaClient
Transmits DTEs and invalidation requests through the DTE service, which
signs with the company certificate and relays to the MH.

Endpoints (by tipo DTE):
- 14 → /document/dte/se/sync/
- 11 → /document/dte/fe/sync/
- 08 → /document/dte/cl/sync/
- otherwise → /document/dte/sync
- anulación → /document/dte/invalidate
- contingencia → /document/contingencia/report

Headers:
    apiKey     service API key
    MH_USER    company NIT (usuario MH)
    MH_KEY     Oficina Virtual password
    key        certificate key
    reference  internal document number

Response (success): {
    "estado": "PROCESADO",
    "codigoGeneracion": "...",
    "selloRecibido": "...",
    "numeroControl": "...",     (optional, echoed from the DTE)
    "fhProcesamiento": "...",
    "descripcionMsg": "...",
    "observaciones": []
}

No automatic retries: a failed submission rolls the document back to
Nueva and the user resubmits.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from facturas.core.catalogs import document_type_info
from facturas.core.config import MHEnvironment, get_api_url, settings
from facturas.core.exceptions import SubmissionError
from facturas.mh.documents import build_dte
from facturas.schemas.models import AcceptanceIds, Document, ServiceCredentials
from facturas.services.document_store import parse_number
from facturas.utils.dte_helpers import generate_codigo_generacion, generate_numero_control

logger = logging.getLogger(__name__)


class SubmissionClient(Protocol):
    async def submit(
        self, document: Document, credentials: ServiceCredentials,
    ) -> AcceptanceIds: ...


class InvalidationClient(Protocol):
    async def invalidate(
        self, request: dict, credentials: ServiceCredentials, reference: str = "",
    ) -> None: ...


class ContingencyClient(Protocol):
    async def report_contingency(
        self, request: dict, credentials: ServiceCredentials, reference: str = "",
    ) -> Optional[str]: ...


def flatten_observaciones(observaciones: Any) -> list[str]:
    """MH observaciones may come as strings, dicts or nested lists."""
    if not isinstance(observaciones, list):
        return [str(observaciones)] if observaciones else []
    flat = []
    for obs in observaciones:
        if isinstance(obs, str):
            flat.append(obs)
        elif isinstance(obs, dict):
            flat.extend(str(v) for v in obs.values())
        elif isinstance(obs, list):
            flat.extend(str(o) for o in obs)
    return flat


class HaciendaClient:
    """
    Async client for the DTE service.

    Usage:
        client = HaciendaClient()
        ids = await client.submit(dte_json, credentials, reference="00001")

    Pass an httpx transport to route requests elsewhere (tests use
    httpx.MockTransport).
    """

    TIMEOUT_SECONDS = 90  # MH can be slow

    def __init__(
        self,
        environment: Optional[MHEnvironment] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.environment = environment or settings.mh_environment
        self.api_key = api_key if api_key is not None else settings.api_key
        self.transport = transport

    def _headers(self, credentials: ServiceCredentials, reference: str) -> dict[str, str]:
        return {
            "apiKey": self.api_key,
            "MH_USER": credentials.user,
            "MH_KEY": credentials.password,
            "key": credentials.certificate_key or "",
            "reference": reference,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.TIMEOUT_SECONDS, verify=True, transport=self.transport
            ) as client:
                return await client.post(url, json=payload, headers=headers)

        except httpx.TimeoutException as e:
            raise SubmissionError(
                f"Timeout: el servicio DTE no respondió en {self.TIMEOUT_SECONDS}s.",
                status_code=504, cause=e,
            ) from e
        except httpx.ConnectError as e:
            raise SubmissionError(
                "No se pudo conectar con el servicio DTE.", status_code=502, cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise SubmissionError(
                f"Error de red en transmisión: {e}", status_code=502, cause=e,
            ) from e

    # ─────────────────────────────────────────────────────────
    # SUBMISSION
    # ─────────────────────────────────────────────────────────

    def build_payload(self, document: Document) -> dict:
        """
        DTE JSON for a document, with fresh codigoGeneracion and numeroControl.
        Documents issued in contingency reuse the codes they were reported with.
        """
        tipo_dte = document.document_type.value
        if document.contingency:
            return build_dte(
                document,
                codigo_generacion=document.contingency.generation_code,
                numero_control=document.contingency.control_number,
                environment=self.environment,
            )
        return build_dte(
            document,
            codigo_generacion=generate_codigo_generacion(),
            numero_control=generate_numero_control(tipo_dte, parse_number(document.number) or 0),
            environment=self.environment,
        )

    async def submit(
        self, document: Document, credentials: ServiceCredentials,
    ) -> AcceptanceIds:
        """
        Transmit a document. Returns the identifiers MH issued, which may be
        incomplete; the caller decides what an incomplete acceptance means.

        Raises:
            SubmissionError: network failure, non-JSON body, or rejection
        """
        dte = self.build_payload(document)
        identificacion = dte["identificacion"]
        tipo_dte = identificacion["tipoDte"]
        reference = document.number
        url = get_api_url(document_type_info(tipo_dte).endpoint, self.environment)
        codigo_generacion = identificacion["codigoGeneracion"]

        logger.info(
            f"Transmitting DTE: type={tipo_dte}, ref={reference}, "
            f"codGen={codigo_generacion[:8]}..."
        )

        response = await self._post(url, dte, self._headers(credentials, reference))
        data = self._parse_response(response)

        estado = data.get("estado", "DESCONOCIDO")
        if estado != "PROCESADO":
            observaciones = flatten_observaciones(data.get("observaciones", []))
            logger.warning(
                f"DTE response estado={estado}: ref={reference}, obs={observaciones}"
            )
            raise SubmissionError(
                f"El MH rechazó el DTE: {data.get('descripcionMsg', estado)}",
                status_code=502, observaciones=observaciones, mh_response=data,
            )

        ids = AcceptanceIds(
            generation_code=data.get("codigoGeneracion"),
            control_number=data.get("numeroControl") or identificacion.get("numeroControl"),
            reception_seal=data.get("selloRecibido"),
        )
        logger.info(
            f"DTE ACCEPTED: ref={reference}, "
            f"sello={(ids.reception_seal or 'N/A')[:16]}..."
        )
        return ids

    # ─────────────────────────────────────────────────────────
    # INVALIDATION
    # ─────────────────────────────────────────────────────────

    async def invalidate(
        self, request: dict, credentials: ServiceCredentials, reference: str = "",
    ) -> None:
        """
        Send an invalidation request. Returns only when MH confirmed it.

        Raises:
            SubmissionError: network failure or rejection
        """
        url = get_api_url("anulacion_dte", self.environment)
        codigo_gen = request.get("identificacion", {}).get("codigoGeneracion") or "?"
        logger.info(f"Sending invalidation: ref={reference}, codGen={codigo_gen[:8]}...")

        response = await self._post(url, request, self._headers(credentials, reference))
        data = self._parse_response(response)

        estado = data.get("estado", "PROCESADO")
        if estado != "PROCESADO":
            raise SubmissionError(
                f"El MH rechazó la invalidación: {data.get('descripcionMsg', estado)}",
                status_code=502,
                observaciones=flatten_observaciones(data.get("observaciones", [])),
                mh_response=data,
            )
        logger.info(f"Invalidation accepted: ref={reference}")

    # ─────────────────────────────────────────────────────────
    # CONTINGENCY
    # ─────────────────────────────────────────────────────────

    async def report_contingency(
        self, request: dict, credentials: ServiceCredentials, reference: str = "",
    ) -> Optional[str]:
        """
        Report an evento de contingencia. Returns the selloRecibido of the
        event, if MH issued one.

        Raises:
            SubmissionError: network failure or rejection
        """
        url = get_api_url("contingencia", self.environment)
        detalle = request.get("detalleDTE", [])
        logger.info(f"Sending contingency report: ref={reference}, documents={len(detalle)}")

        response = await self._post(url, request, self._headers(credentials, reference))
        data = self._parse_response(response)

        estado = data.get("estado", "RECIBIDO")
        if estado == "RECHAZADO":
            raise SubmissionError(
                f"El MH rechazó el evento de contingencia: {data.get('descripcionMsg', estado)}",
                status_code=502,
                observaciones=flatten_observaciones(data.get("observaciones", [])),
                mh_response=data,
            )
        logger.info(f"Contingency report {estado}: ref={reference}")
        return data.get("selloRecibido")

    def _parse_response(self, response: httpx.Response) -> dict:
        """JSON body of a 2xx response; raises SubmissionError otherwise."""
        try:
            data = response.json()
        except ValueError:
            raise SubmissionError(
                f"El servicio DTE retornó una respuesta no-JSON (HTTP {response.status_code}). "
                f"Respuesta: {response.text[:300]}",
                status_code=502,
            )
        if not isinstance(data, dict):
            data = {"observaciones": data}

        if response.is_success:
            return data

        if response.status_code == 401:
            raise SubmissionError(
                "Credenciales de Hacienda inválidas. Verifique usuario y contraseña.",
                status_code=502, mh_response=data,
            )

        observaciones = flatten_observaciones(data.get("observaciones", []))
        descripcion = data.get("descripcionMsg")
        message = "\n".join(observaciones + ([descripcion] if descripcion else []))
        raise SubmissionError(
            message or f"Error del servicio DTE (HTTP {response.status_code})",
            status_code=502, observaciones=observaciones, mh_response=data,
        )


# Singleton instance
hacienda_client = HaciendaClient()
