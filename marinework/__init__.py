"""Get permission for marine work: exemption application frontend."""
