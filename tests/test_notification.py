"""IPN parsing, idempotent recording and the never-raise acknowledgment."""

import asyncio
import json

import pytest

from pesaproxy.common.status import PaymentStatus
from pesaproxy.services.notification.schemas import NotificationParseError, parse_notification

from conftest import TOKEN, TRANSACTION_STATUS

IPN = {
    "OrderTrackingId": "TRK-1",
    "OrderMerchantReference": "ORDER-1",
    "OrderNotificationType": "IPNCHANGE",
    "payment_status_description": "Completed",
    "payment_method": "MpesaKE",
    "amount": "10.00",
    "account": "2547******78",
}


def test_parse_gateway_query_params():
    notification = parse_notification(
        {"OrderTrackingId": "TRK-1", "OrderMerchantReference": "ORDER-1", "OrderNotificationType": "IPNCHANGE"},
        b"",
    )
    assert notification.tracking_id == "TRK-1"
    assert notification.merchant_reference == "ORDER-1"
    assert notification.payment_status_description is None


def test_parse_snake_case_body():
    body = json.dumps({"tracking_id": "TRK-9", "notification_type": "RECURRING", "amount": "x"}).encode()
    notification = parse_notification({}, body)
    assert notification.tracking_id == "TRK-9"
    assert notification.notification_type == "RECURRING"
    assert notification.amount is None


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"{}"])
def test_parse_rejects_malformed(body):
    with pytest.raises(NotificationParseError):
        parse_notification({}, body)


def test_acknowledge_records_and_reconciles(notifications, store):
    ack = asyncio.run(notifications.acknowledge({}, json.dumps(IPN).encode()))

    assert ack == {
        "orderNotificationType": "IPNCHANGE",
        "orderTrackingId": "TRK-1",
        "orderMerchantReference": "ORDER-1",
        "status": 200,
    }
    records = store.notifications("TRK-1")
    assert len(records) == 1
    assert records[0]["amount"] == 10.0
    assert store.get_observation("TRK-1").status == PaymentStatus.COMPLETED


def test_duplicate_delivery_is_recorded_once(notifications, store):
    body = json.dumps(IPN).encode()
    first = asyncio.run(notifications.acknowledge({}, body))
    second = asyncio.run(notifications.acknowledge({}, body))

    assert first == second
    assert len(store.notifications()) == 1


def test_ipn_without_status_looks_it_up(notifications, gateway, store):
    gateway.on(
        TRANSACTION_STATUS,
        {"payment_status_description": "Cancelled", "payment_method": "Visa", "merchant_reference": "ORDER-1"},
    )
    asyncio.run(notifications.acknowledge({"OrderTrackingId": "TRK-1", "OrderNotificationType": "IPNCHANGE"}, b""))

    assert len(gateway.calls(TOKEN)) == 1
    record = store.notifications("TRK-1")[0]
    assert record["payment_status_description"] == "Cancelled"
    assert record["payment_method"] == "Visa"
    assert store.get_observation("TRK-1").status == PaymentStatus.CANCELLED


def test_processing_failure_still_acknowledged(notifications, gateway, store, caplog):
    gateway.on(TOKEN, {"message": "down"}, status_code=503)

    ack = asyncio.run(notifications.acknowledge({"OrderTrackingId": "TRK-1"}, b""))

    assert ack["orderTrackingId"] == "TRK-1"
    assert ack["status"] == 200
    assert store.notifications() == []
    assert "ipn_processing_failed" in caplog.text


def test_malformed_payload_still_acknowledged(notifications, caplog):
    ack = asyncio.run(notifications.acknowledge({}, b"<xml/>"))
    assert ack["status"] == 200
    assert ack["orderTrackingId"] is None
    assert "ipn_malformed" in caplog.text


def test_deeply_nested_body_still_acknowledged(notifications, store, caplog):
    """Bodies the JSON decoder cannot handle are malformed, not server errors."""

    ack = asyncio.run(notifications.acknowledge({}, b"[" * 200000 + b"]" * 200000))
    assert ack["status"] == 200
    assert ack["orderTrackingId"] is None
    assert store.notifications() == []
    assert "ipn_malformed" in caplog.text


def test_later_status_change_is_a_new_record(notifications, store):
    pending = {**IPN, "payment_status_description": "Pending"}
    asyncio.run(notifications.acknowledge({}, json.dumps(pending).encode()))
    asyncio.run(notifications.acknowledge({}, json.dumps(IPN).encode()))

    assert [r["payment_status_description"] for r in store.notifications("TRK-1")] == ["Pending", "Completed"]
    assert store.get_observation("TRK-1").status == PaymentStatus.COMPLETED
