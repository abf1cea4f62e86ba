"""Domain services shared by the HTTP and websocket layers."""
