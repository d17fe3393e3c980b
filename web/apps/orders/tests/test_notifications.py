from apps.orders.adapters import RecordingSink
from apps.orders.domain import Actor, OrderStatus, PaymentMethod, TransitionEvent
from apps.orders.notifications import EventDispatcher, LoggingNotifier


class ExplodingSink:
    def publish(self, event):
        raise RuntimeError("webhook down")


def test_dispatcher_isolates_failing_sinks(place, caplog):
    order = place(PaymentMethod.TRANSFER)
    first, last = RecordingSink(), RecordingSink()
    dispatcher = EventDispatcher([first, ExplodingSink(), last])
    event = TransitionEvent(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED, Actor.WATCHDOG, order)

    dispatcher.publish(event)

    assert first.events == [event]
    assert last.events == [event]
    failed = [r for r in caplog.records if r.getMessage() == "order.event.sink_failed"]
    assert failed and failed[0].sink == "ExplodingSink"


def test_dispatcher_builds_sinks_from_settings(settings):
    settings.ORDER_EVENT_SINKS = [
        "apps.orders.notifications.LoggingNotifier",
        "apps.orders.adapters.RecordingSink",
    ]
    dispatcher = EventDispatcher()
    assert [type(s) for s in dispatcher.sinks] == [LoggingNotifier, RecordingSink]


def test_logging_notifier_writes_one_line(place, caplog):
    order = place(PaymentMethod.GATEWAY)

    LoggingNotifier().publish(TransitionEvent(order.id, None, OrderStatus.PENDING, Actor.CUSTOMER, order))

    records = [r for r in caplog.records if r.getMessage() == "order.notify"]
    assert len(records) == 1
    assert records[0].old_status is None
    assert records[0].new_status == "pending"
    assert records[0].payment_method == "gateway"
