from backend.payments.status import (
    GatewayState,
    WEBHOOK_ORDER_COMPLETED,
    WEBHOOK_ORDER_FAILED,
    normalize_status,
    state_from_webhook_event,
)

def test_normalize_flat_status_response():
    raw = {
        "orderId": "OMO1",
        "state": "COMPLETED",
        "amount": 100000,
        "paymentDetails": [{"transactionId": "T1", "paymentMode": "UPI_QR"}],
    }
    s = normalize_status(raw)
    assert s.state == GatewayState.COMPLETED
    assert s.order_id == "OMO1"
    assert s.amount == 100000
    assert s.transaction_id == "T1"
    assert s.payment_mode == "UPI_QR"
    assert s.raw == raw

def test_normalize_unwraps_data():
    s = normalize_status({"success": True, "data": {"state": "failed", "orderId": "OMO2", "errorCode": "TXN_DECLINED"}})
    assert s.state == GatewayState.FAILED
    assert s.order_id == "OMO2"
    assert s.reason == "TXN_DECLINED"

def test_reason_falls_back_to_payment_details():
    s = normalize_status({"state": "FAILED", "paymentDetails": [{"detailedErrorCode": "INSUFFICIENT_FUNDS"}]})
    assert s.reason == "INSUFFICIENT_FUNDS"

def test_unknown_or_missing_state_is_pending():
    assert normalize_status({"state": "AUTHORIZED"}).state == GatewayState.PENDING
    assert normalize_status({}).state == GatewayState.PENDING
    assert normalize_status(None).state == GatewayState.PENDING

def test_forced_state_from_webhook():
    s = normalize_status({"merchantOrderId": "TKT_1", "state": "PENDING"}, state=GatewayState.COMPLETED)
    assert s.state == GatewayState.COMPLETED
    assert s.merchant_order_id == "TKT_1"

def test_webhook_events():
    assert state_from_webhook_event(WEBHOOK_ORDER_COMPLETED) == GatewayState.COMPLETED
    assert state_from_webhook_event(WEBHOOK_ORDER_FAILED) == GatewayState.FAILED
    assert state_from_webhook_event("pg.refund.completed") is None
    assert state_from_webhook_event(None) is None
