# anonchat/utils/errors.py


class AnonChatError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AnonChatError):
    # Некорректный профиль, фильтр или жалоба. В базу ничего не записано
    pass


class StoreError(AnonChatError):
    # Сбой базы, транзакция уже откачена.
    # events - уведомления о том, что успело закоммититься до сбоя
    def __init__(self, message: str, details: dict | None = None, events: list | None = None):
        super().__init__(message, details)
        self.events = list(events or [])
