"""HTTP and websocket API for Parley."""
