"""Tests for the Blue Dart, DTDC, Ecom Express, XpressBees and Shadowfax
adapters against mocked carrier APIs."""

import base64
import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from litestar_courierhub.adapters.base import IST
from litestar_courierhub.adapters.bluedart import BlueDartAdapter
from litestar_courierhub.adapters.dtdc import DtdcAdapter
from litestar_courierhub.adapters.ecom_express import EcomExpressAdapter
from litestar_courierhub.adapters.shadowfax import ShadowfaxAdapter
from litestar_courierhub.adapters.xpressbees import XpressBeesAdapter
from litestar_courierhub.enums import ShipmentStatus
from litestar_courierhub.exceptions import (
    CarrierError,
    InvalidCredentialsError,
    MalformedPayloadError,
)
from litestar_courierhub.types import (
    CourierCredentials,
    PickupRequest,
    RateRequest,
    ShipmentCreated,
    ShipmentPartiallyCreated,
)

from conftest import make_request, offline_client

CREDENTIALS = CourierCredentials(
    tenant_id="t-1",
    account_id="acct-1",
    api_key="login",
    api_secret="licence",
    account_code="CUST01",
)
RATE_REQUEST = RateRequest(
    pickup_pincode="400001",
    delivery_pincode="110001",
    weight_kg=Decimal("1.0"),
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# Blue Dart

BLUEDART_TRACKING = {
    "GetShipmentTrackingResult": {
        "IsError": False,
        "ShipmentTrackingDetails": [
            {
                "StatusType": "DL",
                "Status": "Shipment Delivered",
                "StatusDate": "02-05-2024",
                "StatusTime": "14:30",
                "StatusLocation": "Pune",
                "ReceivedBy": "Asha",
            },
            {
                "StatusType": "PKD",
                "Status": "Picked Up",
                "StatusDate": "30-04-2024",
                "StatusTime": "11:00",
                "StatusLocation": "Mumbai",
            },
        ],
    }
}


class FakeBlueDart:
    def __init__(self, *, error: str | None = None) -> None:
        self.error = error
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        assert body["Profile"]["LoginID"] == "login"
        operation = request.url.path.rsplit("/", 1)[-1]
        if self.error:
            key = {
                "GenerateWayBill": "GenerateWaybillResult",
                "GetServicesforPincode": "GetServicesforPincodeResult",
            }[operation]
            return httpx.Response(
                200, json={key: {"IsError": True, "ErrorMessage": self.error}}
            )
        if operation == "GenerateWayBill":
            return httpx.Response(
                200,
                json={"GenerateWaybillResult": {"IsError": False, "AWBNo": "BD1"}},
            )
        if operation == "GetShipmentTracking":
            return httpx.Response(200, json=BLUEDART_TRACKING)
        if operation == "GetServicesforPincode":
            return httpx.Response(
                200,
                json={
                    "GetServicesforPincodeResult": {
                        "IsError": False,
                        "ApexInbound": "Yes",
                        "GroundInbound": "Yes",
                    }
                },
            )
        if operation == "PrintAWB":
            content = base64.b64encode(b"%PDF-1.4 BD1").decode()
            return httpx.Response(
                200,
                json={"PrintAWBResult": {"AWBPrintContent": content}},
            )
        return httpx.Response(404)


class TestBlueDart:
    async def test_create_shipment(self):
        carrier = FakeBlueDart()
        adapter = BlueDartAdapter(_client(carrier))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentCreated)
        assert result.tracking_number == "BD1"
        services = carrier.bodies[0]["Request"]["Services"]
        assert services["CreditReferenceNo"] == "ORD-0001"
        assert services["SubProductCode"] == "P"

    async def test_error_flag_is_a_carrier_error(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart(error="Pincode invalid")))
        with pytest.raises(CarrierError, match="Pincode invalid"):
            await adapter.create_shipment(CREDENTIALS, make_request())

    async def test_invalid_login_is_a_credentials_error(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart(error="Invalid Login")))
        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials(CREDENTIALS)

    async def test_missing_licence_key(self):
        adapter = BlueDartAdapter(offline_client())
        credentials = CourierCredentials(
            tenant_id="t-1", account_id="a", api_key="login"
        )
        with pytest.raises(InvalidCredentialsError):
            await adapter.get_rates(credentials, RATE_REQUEST)

    async def test_tracking(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart()))
        tracking = await adapter.get_tracking(CREDENTIALS, "BD1")
        assert tracking.status == ShipmentStatus.DELIVERED
        assert tracking.raw_status == "Shipment Delivered"
        assert tracking.delivered_to == "Asha"
        assert [event.location for event in tracking.events] == [
            "Mumbai",
            "Pune",
        ]
        assert tracking.delivered_at == tracking.events[-1].timestamp

    async def test_rates_are_estimated_per_service(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart()))
        rates = await adapter.get_rates(CREDENTIALS, RATE_REQUEST)
        assert [rate.service_code for rate in rates] == ["E", "A"]
        assert rates[0].total_charge < rates[1].total_charge

    async def test_unserviceable_pincode_has_no_rates(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart(error="Not serviced")))
        assert await adapter.get_rates(CREDENTIALS, RATE_REQUEST) == []

    async def test_label_is_decoded(self):
        adapter = BlueDartAdapter(_client(FakeBlueDart()))
        assert await adapter.get_label(CREDENTIALS, "BD1") == b"%PDF-1.4 BD1"

    def test_status_mapping(self):
        adapter = BlueDartAdapter(offline_client())
        assert adapter.map_status("od") == ShipmentStatus.OUT_FOR_DELIVERY
        assert adapter.map_status("RTD") == ShipmentStatus.RTO_DELIVERED
        assert adapter.map_status("LST") == ShipmentStatus.LOST
        assert adapter.map_status("??") is None

    def test_webhook_parsing(self):
        event = BlueDartAdapter(offline_client()).parse_webhook(
            {
                "AWBNo": "BD1",
                "StatusCode": "ND",
                "StatusDate": "02-05-2024",
                "StatusTime": "09:15",
                "StatusLocation": "Pune",
                "Remarks": "Consignee not available",
            }
        )
        assert event.tracking_number == "BD1"
        assert event.status == ShipmentStatus.NDR_RAISED
        assert event.timestamp.tzinfo == IST
        assert (event.timestamp.hour, event.timestamp.minute) == (9, 15)
        assert event.remarks == "Consignee not available"

    def test_webhook_without_awb(self):
        with pytest.raises(MalformedPayloadError):
            BlueDartAdapter(offline_client()).parse_webhook({"StatusCode": "DL"})


# DTDC


def _dtdc_handler(*, rate_api: bool = True, consignment: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-API-Key"] == "login"
        path = request.url.path
        if path.startswith("/api/v1/pincode/"):
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {"serviceable": True, "codAvailable": False},
                },
            )
        if path == "/api/v1/rate/calculate":
            if not rate_api:
                return httpx.Response(
                    200, json={"success": False, "message": "Not enabled"}
                )
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": [
                        {
                            "serviceName": "Premium",
                            "serviceCode": "PREMIUM",
                            "freightCharge": "150",
                            "totalCharge": "150",
                            "deliveryDays": 2,
                        },
                        {
                            "serviceName": "Ground",
                            "serviceCode": "GROUND",
                            "freightCharge": "70",
                            "totalCharge": "70",
                            "deliveryDays": 6,
                        },
                    ],
                },
            )
        if path == "/api/v1/shipment/create":
            body = json.loads(request.content)
            assert body["customerCode"] == "CUST01"
            result = consignment or {
                "consignmentNumber": "D100",
                "referenceNumber": "ORD-0001",
            }
            return httpx.Response(
                200,
                json={"success": True, "data": {"consignmentNumbers": [result]}},
            )
        if path == "/api/v1/tracking/D100":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "currentStatusCode": "OFD",
                        "currentStatus": "Out for delivery",
                        "currentLocation": "Delhi",
                        "trackingHistory": [
                            {
                                "status": "Out for delivery",
                                "eventDate": "2024-05-02",
                                "eventTime": "08:00:00",
                                "location": "Delhi",
                            },
                            {
                                "status": "Booked",
                                "eventDate": "2024-04-30",
                                "eventTime": "17:00:00",
                                "location": "Mumbai",
                            },
                        ],
                    },
                },
            )
        if path == "/api/v1/pickup/schedule":
            return httpx.Response(
                200,
                json={"success": True, "data": {"pickupRequestNumber": "PR-7"}},
            )
        return httpx.Response(404)

    return handler


class TestDtdc:
    async def test_create_shipment(self):
        adapter = DtdcAdapter(_client(_dtdc_handler()))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentCreated)
        assert result.tracking_number == "D100"
        assert result.external_order_id == "ORD-0001"

    async def test_rejected_consignment(self):
        adapter = DtdcAdapter(
            _client(_dtdc_handler(consignment={"message": "Invalid pincode"}))
        )
        with pytest.raises(CarrierError, match="Invalid pincode"):
            await adapter.create_shipment(CREDENTIALS, make_request())

    async def test_missing_api_key(self):
        adapter = DtdcAdapter(offline_client())
        with pytest.raises(InvalidCredentialsError):
            await adapter.get_tracking(
                CourierCredentials(tenant_id="t-1", account_id="a"), "D100"
            )

    async def test_tracking(self):
        adapter = DtdcAdapter(_client(_dtdc_handler()))
        tracking = await adapter.get_tracking(CREDENTIALS, "D100")
        assert tracking.status == ShipmentStatus.OUT_FOR_DELIVERY
        assert tracking.current_location == "Delhi"
        assert [event.status for event in tracking.events] == [
            "Booked",
            "Out for delivery",
        ]

    async def test_rates_from_rate_api(self):
        adapter = DtdcAdapter(_client(_dtdc_handler()))
        rates = await adapter.get_rates(CREDENTIALS, RATE_REQUEST)
        assert [rate.service_code for rate in rates] == ["GROUND", "PREMIUM"]
        assert rates[0].is_surface
        assert rates[1].is_express

    async def test_rates_are_estimated_without_rate_api(self):
        adapter = DtdcAdapter(_client(_dtdc_handler(rate_api=False)))
        rates = await adapter.get_rates(CREDENTIALS, RATE_REQUEST)
        assert [rate.service_code for rate in rates] == ["GROUND", "PREMIUM"]

    async def test_cod_not_available(self):
        adapter = DtdcAdapter(_client(_dtdc_handler()))
        request = RateRequest(
            pickup_pincode="400001",
            delivery_pincode="110001",
            weight_kg=Decimal("1.0"),
            is_cod=True,
            cod_amount=Decimal("500"),
        )
        assert await adapter.get_rates(CREDENTIALS, request) == []

    async def test_pickup(self):
        adapter = DtdcAdapter(_client(_dtdc_handler()))
        pickup = await adapter.schedule_pickup(
            CREDENTIALS,
            PickupRequest(
                tracking_numbers=["D100", "D101"],
                pickup_date=datetime(2024, 5, 3, tzinfo=IST),
            ),
        )
        assert pickup.pickup_id == "PR-7"
        assert pickup.shipment_count == 2

    def test_status_mapping(self):
        adapter = DtdcAdapter(offline_client())
        assert adapter.map_status("dlv") == ShipmentStatus.DELIVERED
        assert adapter.map_status("UND") == ShipmentStatus.NDR_RAISED
        assert adapter.map_status("RTN") == ShipmentStatus.RTO_DELIVERED
        assert adapter.map_status("XYZ") is None

    def test_webhook_parsing(self):
        event = DtdcAdapter(offline_client()).parse_webhook(
            {
                "consignmentNumber": "D100",
                "statusCode": "UND",
                "eventDate": "2024-05-02",
                "eventTime": "18:00:00",
                "location": "Delhi",
                "remarks": "Customer not available",
            }
        )
        assert event.tracking_number == "D100"
        assert event.status == ShipmentStatus.NDR_RAISED
        assert event.timestamp.hour == 18
        assert event.remarks == "Customer not available"

    def test_webhook_without_consignment_number(self):
        with pytest.raises(MalformedPayloadError):
            DtdcAdapter(offline_client()).parse_webhook({"statusCode": "DLV"})


# Ecom Express

ECOM_TRACKING_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<ecomexpress-objects version="1.0">
  <object pk="1" model="awb">
    <field type="BigIntegerField" name="awb_number">ECX1</field>
    <field type="CharField" name="status">Delivered</field>
    <field type="CharField" name="reason_code_number">999</field>
    <field type="CharField" name="current_location_name">Pune</field>
    <field type="DateTimeField" name="delivery_date">2024-05-02 14:30:00</field>
    <field type="CharField" name="receiver">Asha</field>
    <field type="EmbeddedObjectField" name="scans">
      <object model="scan_stages">
        <field name="updated_on">2024-05-02 14:30:00</field>
        <field name="status">Delivered</field>
        <field name="location_city">Pune</field>
      </object>
      <object model="scan_stages">
        <field name="updated_on">2024-04-30 10:00:00</field>
        <field name="status">Picked up</field>
        <field name="location_city">Mumbai</field>
      </object>
    </field>
  </object>
</ecomexpress-objects>
"""


def _ecom_handler(*, manifest_success: bool = True):
    def handler(request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        if form.get("username") != "login":
            return httpx.Response(200, json={"error": "bad credentials"})
        path = request.url.path
        if path == "/apiv2/pincodes/":
            return httpx.Response(
                200, json=[{"pincode": 110001, "active": True}]
            )
        if path == "/apiv2/fetch_awb/":
            return httpx.Response(200, json={"success": "yes", "awb": [7001]})
        if path == "/apiv2/manifest_awb/":
            manifest = json.loads(form["json_input"])
            assert manifest[0]["AWB_NUMBER"] == "7001"
            result = {"success": True, "awb": "7001"}
            if not manifest_success:
                result = {"success": False, "reason": "INCORRECT_PINCODE"}
            return httpx.Response(200, json={"shipments": [result]})
        if path == "/track_me/api/mawbd/":
            return httpx.Response(200, content=ECOM_TRACKING_XML)
        return httpx.Response(404)

    return handler


class TestEcomExpress:
    async def test_create_shipment_allocates_then_manifests(self):
        adapter = EcomExpressAdapter(_client(_ecom_handler()))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentCreated)
        assert result.tracking_number == "7001"

    async def test_manifest_rejection(self):
        adapter = EcomExpressAdapter(
            _client(_ecom_handler(manifest_success=False))
        )
        with pytest.raises(CarrierError, match="INCORRECT_PINCODE"):
            await adapter.create_shipment(CREDENTIALS, make_request())

    async def test_rejected_credentials(self):
        adapter = EcomExpressAdapter(_client(_ecom_handler()))
        credentials = CourierCredentials(
            tenant_id="t-1", account_id="a", api_key="other", api_secret="x"
        )
        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials(credentials)

    async def test_rates_for_serviceable_pincode(self):
        adapter = EcomExpressAdapter(_client(_ecom_handler()))
        [rate] = await adapter.get_rates(CREDENTIALS, RATE_REQUEST)
        assert rate.service_code == "REGULAR"
        other = RateRequest(
            pickup_pincode="400001",
            delivery_pincode="999999",
            weight_kg=Decimal("1.0"),
        )
        assert await adapter.get_rates(CREDENTIALS, other) == []

    async def test_tracking_reads_xml(self):
        adapter = EcomExpressAdapter(_client(_ecom_handler()))
        tracking = await adapter.get_tracking(CREDENTIALS, "ECX1")
        assert tracking.status == ShipmentStatus.DELIVERED
        assert tracking.current_location == "Pune"
        assert tracking.delivered_to == "Asha"
        assert [event.location for event in tracking.events] == [
            "Mumbai",
            "Pune",
        ]

    def test_webhooks_are_not_supported(self):
        with pytest.raises(CarrierError, match="does not support"):
            EcomExpressAdapter(offline_client()).parse_webhook({"awb": "1"})

    def test_status_mapping(self):
        adapter = EcomExpressAdapter(offline_client())
        assert adapter.map_status("999") == ShipmentStatus.DELIVERED
        assert adapter.map_status("203") == ShipmentStatus.NDR_RAISED
        assert adapter.map_status("777") == ShipmentStatus.RTO_INITIATED
        assert adapter.map_status("1") is None


# XpressBees


class FakeXpressBees:
    def __init__(self, *, awb: str | None = "XB1") -> None:
        self.awb = awb
        self.logins = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/")
        if path == "users/login":
            self.logins += 1
            body = json.loads(request.content)
            if body["password"] != "licence":
                return httpx.Response(200, json={"status": False})
            return httpx.Response(200, json={"status": True, "data": "xb-tok"})
        assert request.headers["Authorization"] == "Bearer xb-tok"
        if path == "shipments2":
            data = {"order_id": 77, "shipment_id": 88}
            if self.awb:
                data["awb_number"] = self.awb
            return httpx.Response(200, json={"status": True, "data": data})
        if path == "shipments2/track/XB1":
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {
                        "status": "delivered",
                        "history": [
                            {
                                "status_code": "DL",
                                "event_time": "2024-05-02 12:00",
                                "location": "Pune",
                            },
                            {
                                "status_code": "PU",
                                "event_time": "2024-05-01 09:00",
                                "location": "Mumbai",
                            },
                        ],
                    },
                },
            )
        if path == "courier/serviceability":
            return httpx.Response(
                200, json={"status": False, "message": "Pincode not serviceable"}
            )
        return httpx.Response(404)


class TestXpressBees:
    async def test_create_shipment(self):
        carrier = FakeXpressBees()
        adapter = XpressBeesAdapter(_client(carrier))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentCreated)
        assert result.tracking_number == "XB1"
        assert result.external_order_id == "77"
        assert result.external_shipment_id == "88"

    async def test_order_without_awb_is_partial(self):
        adapter = XpressBeesAdapter(_client(FakeXpressBees(awb=None)))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentPartiallyCreated)
        assert result.external_order_id == "77"
        assert "without an AWB" in result.awb_error

    async def test_token_is_reused(self):
        carrier = FakeXpressBees()
        adapter = XpressBeesAdapter(_client(carrier))
        await adapter.create_shipment(CREDENTIALS, make_request())
        await adapter.get_tracking(CREDENTIALS, "XB1")
        assert carrier.logins == 1

    async def test_rejected_login(self):
        adapter = XpressBeesAdapter(_client(FakeXpressBees()))
        credentials = CourierCredentials(
            tenant_id="t-1", account_id="a", api_key="login", api_secret="no"
        )
        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials(credentials)

    async def test_tracking(self):
        adapter = XpressBeesAdapter(_client(FakeXpressBees()))
        tracking = await adapter.get_tracking(CREDENTIALS, "XB1")
        assert tracking.status == ShipmentStatus.DELIVERED
        assert tracking.current_location == "Pune"
        assert tracking.delivered_at == tracking.events[-1].timestamp

    async def test_unserviceable_route_has_no_rates(self):
        adapter = XpressBeesAdapter(_client(FakeXpressBees()))
        assert await adapter.get_rates(CREDENTIALS, RATE_REQUEST) == []

    def test_status_mapping_accepts_codes_and_text(self):
        adapter = XpressBeesAdapter(offline_client())
        assert adapter.map_status("ofd") == ShipmentStatus.OUT_FOR_DELIVERY
        assert adapter.map_status("Out for delivery") == (
            ShipmentStatus.OUT_FOR_DELIVERY
        )
        assert adapter.map_status("RT-IT") == ShipmentStatus.RTO_INITIATED
        assert adapter.map_status("unknown") is None


# Shadowfax


def _shadowfax_handler(*, awb: str | None = "SF1"):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Token login"
        path = request.url.path.removeprefix("/api/")
        if path == "v1/serviceability/":
            pincode = request.url.params["pincodes"]
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"pincode": pincode, "serviceable": pincode == "110001"}
                    ]
                },
            )
        if path == "v3/clients/orders/":
            if awb is None:
                return httpx.Response(200, json={"message": "Invalid pincode"})
            return httpx.Response(200, json={"data": {"awb_number": awb}})
        if path == "v4/clients/orders/SF1/track/":
            return httpx.Response(
                200,
                json={
                    "order_details": {"status": "ofd"},
                    "tracking_details": [
                        {
                            "status_id": "ofd",
                            "created": "2024-05-02T08:00:00+05:30",
                            "location": "Bengaluru",
                        }
                    ],
                },
            )
        return httpx.Response(404)

    return handler


class TestShadowfax:
    async def test_create_shipment(self):
        adapter = ShadowfaxAdapter(_client(_shadowfax_handler()))
        result = await adapter.create_shipment(CREDENTIALS, make_request())
        assert isinstance(result, ShipmentCreated)
        assert result.tracking_number == "SF1"

    async def test_rejected_shipment(self):
        adapter = ShadowfaxAdapter(_client(_shadowfax_handler(awb=None)))
        with pytest.raises(CarrierError, match="Invalid pincode"):
            await adapter.create_shipment(CREDENTIALS, make_request())

    async def test_tracking(self):
        adapter = ShadowfaxAdapter(_client(_shadowfax_handler()))
        tracking = await adapter.get_tracking(CREDENTIALS, "SF1")
        assert tracking.status == ShipmentStatus.OUT_FOR_DELIVERY
        assert tracking.current_location == "Bengaluru"
        assert tracking.delivered_at is None

    async def test_rates_follow_serviceability(self):
        adapter = ShadowfaxAdapter(_client(_shadowfax_handler()))
        [rate] = await adapter.get_rates(CREDENTIALS, RATE_REQUEST)
        assert rate.service_code == "STANDARD"
        other = RateRequest(
            pickup_pincode="400001",
            delivery_pincode="560001",
            weight_kg=Decimal("1.0"),
        )
        assert await adapter.get_rates(CREDENTIALS, other) == []

    async def test_rejected_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401)

        with pytest.raises(InvalidCredentialsError):
            await ShadowfaxAdapter(_client(handler)).validate_credentials(
                CREDENTIALS
            )

    def test_status_mapping(self):
        adapter = ShadowfaxAdapter(offline_client())
        assert adapter.map_status("NC") == ShipmentStatus.NDR_RAISED
        assert adapter.map_status("rts_d") == ShipmentStatus.RTO_DELIVERED
        assert adapter.map_status("picked") == ShipmentStatus.PICKED_UP
        assert adapter.map_status("new_status") is None
