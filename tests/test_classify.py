from rcpt_core.classify import NotificationClassifier, NotificationKind


def test_classify_kinds():
    c = NotificationClassifier(["does not allow"], ["saved with warnings"])
    assert c.classify("Receipt type DOES NOT ALLOW reallocation") is NotificationKind.BLOCKING
    assert c.classify("Record saved with warnings") is NotificationKind.INFORMATIONAL
    assert c.classify("Something else happened") is NotificationKind.UNKNOWN
    assert c.classify(None) is NotificationKind.TIMEOUT


def test_only_blocking_is_fatal():
    assert NotificationKind.BLOCKING.fatal
    assert not NotificationKind.UNKNOWN.fatal
    assert not NotificationKind.TIMEOUT.fatal
    assert not NotificationKind.INFORMATIONAL.fatal


def test_phrases_are_literal():
    c = NotificationClassifier(["amount (net)"])
    assert c.classify("bad amount (net) value") is NotificationKind.BLOCKING
    assert c.classify("bad amount net value") is NotificationKind.UNKNOWN


def test_from_cfg_defaults():
    c = NotificationClassifier.from_cfg({})
    assert c.classify("does not allow") is NotificationKind.BLOCKING
