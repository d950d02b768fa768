"""
GLS (ASM) carrier client over the B2B SOAP web service.

Three operations are consumed:

    GrabaServicios    create a shipment, returns reference and tracking number
    GetEtiquetaEnvio  fetch the label as a base64 PDF
    GetExp            fetch expedition status and the tracking event list

Transport failures (timeouts, connection errors, 5xx without a SOAP fault)
raise CarrierUnavailable and are retried by the next scheduled sync. SOAP
faults and unusable responses raise CarrierError.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx
from lxml import etree

from printshop.core.config import get_settings
from printshop.core.logging import get_logger

logger = get_logger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
ASM_NS = "http://www.asmred.com/"

SHIPPING_SETTINGS_CATEGORY = "shipping"

CARRIER_DATE_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

COUNTRY_CODES = {
    "ESPAÑA": "ES",
    "ESPANA": "ES",
    "SPAIN": "ES",
    "PORTUGAL": "PT",
    "FRANCIA": "FR",
    "FRANCE": "FR",
    "ITALIA": "IT",
    "ITALY": "IT",
    "ALEMANIA": "DE",
    "GERMANY": "DE",
}

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)


class CarrierError(Exception):
    """Base exception for carrier errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class CarrierUnavailable(CarrierError):
    """Carrier could not be reached or answered with a server error."""

    pass


class CarrierNotConfigured(CarrierError):
    """Carrier integration is disabled or missing credentials."""

    pass


def normalize_country(country: Optional[str]) -> str:
    """Map a country name or code to an ISO 3166-1 alpha-2 code, default ES."""
    if not country or not country.strip():
        return "ES"
    value = country.strip().upper()
    if value in COUNTRY_CODES:
        return COUNTRY_CODES[value]
    if len(value) == 2 and value.isalpha():
        return value
    return "ES"


def parse_carrier_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a carrier timestamp as a naive carrier-local datetime."""
    if not value or not value.strip():
        return None
    text = value.strip()
    for fmt in CARRIER_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class CarrierConfig:
    """Carrier endpoint, credentials and sender address."""

    api_url: str
    client_id: str
    username: str
    password: str
    sender_name: str = ""
    sender_address: str = ""
    sender_city: str = ""
    sender_zipcode: str = ""
    sender_country: str = "ES"
    sender_phone: str = ""
    sender_email: str = ""

    @classmethod
    def from_settings(cls, values: dict[str, str]) -> "CarrierConfig":
        """
        Build the config from "shipping" settings rows.

        Raises:
            CarrierNotConfigured: If the integration is disabled or incomplete
        """
        if (values.get("gls_enabled") or "").strip().lower() != "true":
            raise CarrierNotConfigured("GLS integration is disabled")

        required = ("gls_api_url", "gls_client_id", "gls_username", "gls_password")
        missing = [key for key in required if not (values.get(key) or "").strip()]
        if missing:
            raise CarrierNotConfigured(
                "GLS credentials are incomplete",
                missing=missing,
            )

        api_url = values["gls_api_url"].strip()
        for suffix in ("?wsdl", "?WSDL"):
            api_url = api_url.replace(suffix, "")

        return cls(
            api_url=api_url,
            client_id=values["gls_client_id"].strip(),
            username=values["gls_username"].strip(),
            password=values["gls_password"],
            sender_name=values.get("gls_sender_name", ""),
            sender_address=values.get("gls_sender_address", ""),
            sender_city=values.get("gls_sender_city", ""),
            sender_zipcode=values.get("gls_sender_zipcode", ""),
            sender_country=normalize_country(values.get("gls_sender_country")),
            sender_phone=values.get("gls_sender_phone", ""),
            sender_email=values.get("gls_sender_email", ""),
        )


@dataclass(frozen=True)
class ShipmentRequest:
    reference: str
    recipient_name: str
    recipient_address: str
    recipient_city: str
    recipient_postal_code: str
    recipient_country: str = "ES"
    recipient_phone: Optional[str] = None
    recipient_email: Optional[str] = None
    packages: int = 1
    weight: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CarrierShipment:
    reference: str
    tracking_number: str


@dataclass(frozen=True)
class CarrierTrackingEvent:
    event_date: datetime
    description: str
    location: Optional[str] = None
    code: Optional[str] = None
    event_type: Optional[str] = None


@dataclass
class CarrierTracking:
    """Expedition state as reported by the carrier."""

    status_code: Optional[int]
    status_text: Optional[str] = None
    incidence: Optional[str] = None
    delivered_at: Optional[datetime] = None
    events: list[CarrierTrackingEvent] = field(default_factory=list)


class CarrierAPI(Protocol):
    async def create_shipment(self, request: ShipmentRequest) -> CarrierShipment: ...

    async def get_label(self, reference: str) -> str: ...

    async def get_tracking(self, reference: str) -> CarrierTracking: ...

    async def check_connectivity(self) -> bool: ...


def _local(element: etree._Element) -> str:
    return etree.QName(element).localname


def _find_local(root: etree._Element, name: str) -> Optional[etree._Element]:
    for element in root.iter():
        if isinstance(element.tag, str) and _local(element) == name:
            return element
    return None


def _child_text(element: etree._Element, name: str) -> Optional[str]:
    for child in element:
        if isinstance(child.tag, str) and _local(child) == name:
            text = (child.text or "").strip()
            return text or None
    return None


class GLSCarrierClient:
    """
    Async client for the GLS B2B SOAP service.

    Args:
        config: Endpoint, credentials and sender address
        timeout: Seconds allowed for shipment, label and tracking calls
        connect_timeout: Seconds allowed for the connectivity check
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        config: CarrierConfig,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.config = config
        self.timeout = timeout if timeout is not None else settings.carrier_timeout_seconds
        self.connect_timeout = (
            connect_timeout
            if connect_timeout is not None
            else settings.carrier_connect_timeout_seconds
        )
        self._transport = transport

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_shipment(self, request: ShipmentRequest) -> CarrierShipment:
        """
        Register a shipment with the carrier.

        Raises:
            CarrierUnavailable: On timeout, transport error or 5xx
            CarrierError: On SOAP fault or a response without reference or tracking
        """
        body = etree.Element(f"{{{ASM_NS}}}GrabaServicios", nsmap={None: ASM_NS})
        doc_in = etree.SubElement(body, f"{{{ASM_NS}}}docIn")
        doc_in.text = etree.CDATA(self._build_services_document(request))

        root = await self._call("GrabaServicios", body, self.timeout)
        result = self._result_tree(root, "GrabaServiciosResult")

        reference_el = _find_local(result, "Referencia")
        tracking_el = _find_local(result, "NumeroEnvio")
        reference = (reference_el.text or "").strip() if reference_el is not None else ""
        tracking = (tracking_el.text or "").strip() if tracking_el is not None else ""
        if not reference or not tracking:
            raise CarrierError(
                "Carrier response has no reference or tracking number",
                operation="GrabaServicios",
                order_reference=request.reference,
            )

        logger.info(
            "Carrier shipment created",
            order_reference=request.reference,
            carrier_reference=reference,
            tracking_number=tracking,
        )
        return CarrierShipment(reference=reference, tracking_number=tracking)

    async def get_label(self, reference: str) -> str:
        """
        Fetch the shipment label.

        Returns:
            Base64 encoded PDF
        """
        body = etree.Element(f"{{{ASM_NS}}}GetEtiquetaEnvio", nsmap={None: ASM_NS})
        etree.SubElement(body, f"{{{ASM_NS}}}uid").text = self.config.client_id
        etree.SubElement(body, f"{{{ASM_NS}}}referencia").text = reference
        etree.SubElement(body, f"{{{ASM_NS}}}formato").text = "PDF"

        root = await self._call("GetEtiquetaEnvio", body, self.timeout)
        result = _find_local(root, "GetEtiquetaEnvioResult")
        label = "".join(result.itertext()).strip() if result is not None else ""
        if not label:
            raise CarrierError(
                "Carrier returned no label",
                operation="GetEtiquetaEnvio",
                carrier_reference=reference,
            )
        return label

    async def get_tracking(self, reference: str) -> CarrierTracking:
        """
        Fetch expedition status and tracking events.

        Args:
            reference: Carrier expedition uid

        Returns:
            Tracking state with events sorted by date
        """
        body = etree.Element(f"{{{ASM_NS}}}GetExp", nsmap={None: ASM_NS})
        etree.SubElement(body, f"{{{ASM_NS}}}uid").text = reference

        root = await self._call("GetExp", body, self.timeout)
        result = self._result_tree(root, "GetExpResult")
        expedition = _find_local(result, "exp")
        if expedition is None:
            raise CarrierError(
                "Carrier has no expedition for reference",
                operation="GetExp",
                carrier_reference=reference,
            )
        return self._parse_expedition(expedition, reference)

    async def check_connectivity(self) -> bool:
        """Check that the carrier endpoint answers within the connect timeout."""
        try:
            async with self._client(self.connect_timeout) as client:
                response = await client.get(self.config.api_url)
        except httpx.HTTPError as e:
            logger.warning(
                "Carrier connectivity check failed",
                url=self.config.api_url,
                error=str(e),
            )
            return False
        return response.status_code < 500

    # ------------------------------------------------------------------
    # SOAP plumbing
    # ------------------------------------------------------------------

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=self._transport)

    def _envelope(self, body_content: etree._Element) -> bytes:
        envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"soap": SOAP_ENV_NS})
        body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        body.append(body_content)
        return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")

    async def _call(
        self,
        action: str,
        body_content: etree._Element,
        timeout: float,
    ) -> etree._Element:
        payload = self._envelope(body_content)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f"{ASM_NS}{action}",
        }

        try:
            async with self._client(timeout) as client:
                response = await client.post(self.config.api_url, content=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Carrier request timed out", action=action, timeout=timeout)
            raise CarrierUnavailable(
                "Carrier request timed out",
                operation=action,
                timeout=timeout,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Carrier request failed", action=action, error=str(e))
            raise CarrierUnavailable(
                "Carrier request failed",
                operation=action,
                error=str(e),
            ) from e

        fault = self._fault_message(response.content)
        if fault is not None:
            logger.error(
                "Carrier returned SOAP fault",
                action=action,
                status_code=response.status_code,
                fault=fault,
            )
            raise CarrierError(
                f"Carrier fault: {fault}",
                operation=action,
                status_code=response.status_code,
            )

        if response.status_code >= 500:
            raise CarrierUnavailable(
                f"Carrier server error {response.status_code}",
                operation=action,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise CarrierError(
                f"Carrier HTTP error {response.status_code}",
                operation=action,
                status_code=response.status_code,
            )

        try:
            return etree.fromstring(response.content, parser=_PARSER)
        except etree.XMLSyntaxError as e:
            raise CarrierError(
                "Carrier response is not valid XML",
                operation=action,
            ) from e

    @staticmethod
    def _fault_message(content: bytes) -> Optional[str]:
        if b"Fault" not in content:
            return None
        try:
            root = etree.fromstring(content, parser=_PARSER)
        except etree.XMLSyntaxError:
            return None
        fault = _find_local(root, "Fault")
        if fault is None:
            return None
        message = _find_local(fault, "faultstring")
        detail = _find_local(fault, "detail")
        text = (message.text or "").strip() if message is not None else "Unknown SOAP fault"
        detail_text = " ".join(detail.itertext()).strip() if detail is not None else ""
        return f"{text} - {detail_text}" if detail_text else text

    @staticmethod
    def _result_tree(root: etree._Element, result_name: str) -> etree._Element:
        """Return the operation result, parsing it when the XML arrives as text."""
        result = _find_local(root, result_name)
        if result is None:
            return root
        if len(result) == 0 and (result.text or "").lstrip().startswith("<"):
            try:
                return etree.fromstring(result.text.strip().encode("utf-8"), parser=_PARSER)
            except etree.XMLSyntaxError as e:
                raise CarrierError(
                    "Carrier result is not valid XML",
                    operation=result_name,
                ) from e
        return result

    def _build_services_document(self, request: ShipmentRequest) -> str:
        services = etree.Element("Servicios")
        service = etree.SubElement(services, "Servicio", uid=self.config.client_id)

        sender = etree.SubElement(service, "Remitente")
        etree.SubElement(sender, "Cuenta").text = self.config.username
        etree.SubElement(sender, "Nombre").text = self.config.sender_name
        etree.SubElement(sender, "Direccion").text = self.config.sender_address
        etree.SubElement(sender, "Poblacion").text = self.config.sender_city
        etree.SubElement(sender, "CodPostal").text = self.config.sender_zipcode
        etree.SubElement(sender, "Pais").text = self.config.sender_country
        if self.config.sender_phone:
            etree.SubElement(sender, "Telefono").text = self.config.sender_phone
        if self.config.sender_email:
            etree.SubElement(sender, "Email").text = self.config.sender_email

        recipient = etree.SubElement(service, "Destinatario")
        etree.SubElement(recipient, "Nombre").text = request.recipient_name
        etree.SubElement(recipient, "Direccion").text = request.recipient_address
        etree.SubElement(recipient, "Poblacion").text = request.recipient_city
        etree.SubElement(recipient, "Provincia").text = request.recipient_city
        etree.SubElement(recipient, "CodPostal").text = request.recipient_postal_code
        etree.SubElement(recipient, "Pais").text = normalize_country(request.recipient_country)
        if request.recipient_phone:
            etree.SubElement(recipient, "Telefono").text = request.recipient_phone
        if request.recipient_email:
            etree.SubElement(recipient, "Email").text = request.recipient_email

        parcel = etree.SubElement(service, "Envio")
        etree.SubElement(parcel, "Bultos").text = str(max(request.packages, 1))
        if request.weight:
            etree.SubElement(parcel, "Peso").text = str(request.weight)
        etree.SubElement(parcel, "Retorno").text = "N"
        etree.SubElement(parcel, "POD").text = "N"
        if request.notes:
            etree.SubElement(parcel, "Observaciones").text = request.notes

        etree.SubElement(service, "Referencia").text = request.reference
        return etree.tostring(services, encoding="unicode")

    def _parse_expedition(self, expedition: etree._Element, reference: str) -> CarrierTracking:
        raw_code = _child_text(expedition, "codestado")
        try:
            status_code = int(raw_code) if raw_code is not None else None
        except ValueError:
            logger.warning(
                "Unrecognised carrier status code",
                carrier_reference=reference,
                code=raw_code,
            )
            status_code = None

        events: list[CarrierTrackingEvent] = []
        tracking_list = _find_local(expedition, "tracking_list")
        if tracking_list is not None:
            for item in tracking_list:
                if not isinstance(item.tag, str) or _local(item) != "tracking":
                    continue
                event_date = parse_carrier_date(_child_text(item, "fecha"))
                description = _child_text(item, "evento")
                if event_date is None or not description:
                    logger.warning(
                        "Skipping incomplete tracking event",
                        carrier_reference=reference,
                    )
                    continue
                location = _child_text(item, "nombreplaza") or _child_text(item, "plaza")
                events.append(
                    CarrierTrackingEvent(
                        event_date=event_date,
                        description=description[:500],
                        location=(location[:255] if location else None),
                        code=_child_text(item, "codigo"),
                        event_type=_child_text(item, "tipo"),
                    )
                )

        events.sort(key=lambda event: event.event_date)

        delivered_at = None
        if status_code == 7:
            delivered_at = events[-1].event_date if events else None

        return CarrierTracking(
            status_code=status_code,
            status_text=_child_text(expedition, "estado"),
            incidence=_child_text(expedition, "incidencia"),
            delivered_at=delivered_at,
            events=events,
        )
