"""
rgstore_lib package

This package is the reusable helper library for the RG Publication store.
It holds cart arithmetic and persistence, coupon rules, order lifecycle
helpers, request validation, the JSON response envelope, auth decorators and
the AWS integrations (S3 images, SQS order events, SNS order alerts).

The most used helpers are re-exported here so routes can import them
directly from rgstore_lib without referencing submodules.
Example:
    from rgstore_lib import cart_summary, format_inr
"""

# Expose cart helper functions
from .cart_utils import calculate_cart_total, cart_item_count, cart_summary, merge_carts

# Expose currency formatting helpers
from .currency import format_inr, round_money, to_paise

from .responses import APIError, ValidationFailed, api_response, error_response

from .auth import admin_required, get_current_user, login_required

from .storage_s3 import upload_image, delete_image, allowed_image, object_key

from .aws_events import send_order_event_to_sqs, notify_order_via_sns
