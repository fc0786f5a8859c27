# Webhook errors
EMPTY_BODY = "Empty request body"
MISSING_SIGNATURE = "Missing X-Hub-Signature header"
INVALID_SIGNATURE = "Invalid webhook signature"
MALFORMED_PAYLOAD = "Malformed webhook payload"

# Relay authentication
INVALID_AUTH_CREDENTIALS = "Invalid authentication credentials"
RELAY_NOT_CONFIGURED = "Relay token not configured"
WWW_AUTHENTICATE_HEADER = "Bearer"

# Headers
SIGNATURE_HEADER = "X-Hub-Signature"
DELIVERY_HEADER = "X-Zammad-Delivery"
