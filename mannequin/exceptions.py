class UserNotFound(Exception):
    """Raised when a user id does not resolve to a row."""

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__("User not found")


class EmailAlreadyRegistered(Exception):
    def __init__(self, email):
        self.email = email
        super().__init__("Email already registered")


class InsufficientCredits(Exception):
    """Raised when a user has no credit left to spend on a generation."""

    def __init__(self, user_id, available):
        self.user_id = user_id
        self.available = available
        super().__init__("Insufficient credits")


class UnsupportedGarment(Exception):
    def __init__(self, label):
        self.label = label
        super().__init__(f"Unsupported garment type: {label!r}")


class InvalidUpload(Exception):
    """Raised when an uploaded image has the wrong type, size or encoding."""


class GenerationNotFound(Exception):
    def __init__(self, generation_id):
        self.generation_id = generation_id
        super().__init__("Generation not found")


class GenerationFailed(Exception):
    """Raised when the image model does not return a usable render."""


class InvalidSignature(Exception):
    pass


class OrderNotFound(Exception):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("Order not found")


class PaymentGatewayError(Exception):
    """Raised when the payment gateway rejects or fails a request."""
