"""client/ -- Python client for the TokenGate API.

Layer rule: client/ talks to the server over HTTP only. It imports nothing
from api/, auth/, or core/.
"""
