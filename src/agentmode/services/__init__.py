"""Services: vault storage, settings and device authorization."""
