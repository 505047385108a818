from mail_relay.storage.forwarded_ids import ForwardedIdStore

__all__ = ["ForwardedIdStore"]
