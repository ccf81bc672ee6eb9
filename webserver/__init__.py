"""HTTP/WebSocket ingress for the signal desk."""
