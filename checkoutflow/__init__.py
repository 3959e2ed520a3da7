"""checkoutflow - multi-step checkout orchestration.

Turns a cart into a confirmed order through address, shipping, payment
and review steps, with cross-domain validation and an order assembly
saga that reserves inventory, submits the order and starts payment.
"""

__version__ = "0.1.0"
