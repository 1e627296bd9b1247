import json

import read_sqs


class FakeSQS:
    def __init__(self, messages):
        self.messages = messages
        self.deleted = []

    def receive_message(self, QueueUrl, MaxNumberOfMessages, WaitTimeSeconds):
        return {"Messages": self.messages[:MaxNumberOfMessages]}

    def delete_message(self, QueueUrl, ReceiptHandle):
        self.deleted.append(ReceiptHandle)


def message(number, handle):
    body = {"event": "order.placed", "order_number": number, "status": "pending", "total": 590.0}
    return {"Body": json.dumps(body), "ReceiptHandle": handle}


def test_format_event_headline():
    text = read_sqs.format_event(json.dumps({"event": "order.cancelled", "order_number": "RG-2025-000001",
                                             "status": "cancelled"}))
    assert text.splitlines()[0] == "order.cancelled RG-2025-000001 (cancelled)"


def test_format_event_passes_through_non_json():
    assert read_sqs.format_event("plain text") == "plain text"


def test_missing_queue_url(monkeypatch, capsys):
    monkeypatch.setattr(read_sqs, "SQS_QUEUE_URL", None)
    assert read_sqs.main([]) == 1
    assert "Missing SQS_QUEUE_URL" in capsys.readouterr().out


def test_reads_and_deletes_messages(monkeypatch, capsys):
    fake = FakeSQS([message("RG-2025-000001", "h1"), message("RG-2025-000002", "h2")])
    monkeypatch.setattr(read_sqs, "SQS_QUEUE_URL", "https://sqs.example/queue")
    monkeypatch.setattr(read_sqs.boto3, "client", lambda *args, **kwargs: fake)

    assert read_sqs.main(["-n", "2", "--delete"]) == 0
    out = capsys.readouterr().out
    assert "RG-2025-000002" in out
    assert fake.deleted == ["h1", "h2"]


def test_no_messages(monkeypatch, capsys):
    monkeypatch.setattr(read_sqs, "SQS_QUEUE_URL", "https://sqs.example/queue")
    monkeypatch.setattr(read_sqs.boto3, "client", lambda *args, **kwargs: FakeSQS([]))

    assert read_sqs.main([]) == 0
    assert "No messages available." in capsys.readouterr().out
