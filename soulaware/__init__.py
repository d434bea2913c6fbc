"""Guest-mode AI coaching chat service.

Packages:
- engine: adaptive coaching-reply pipeline, classic reply, purpose snapshot
- providers: language-model client interface, factory, mock and HTTP clients
- middleware: request id and guest cookie
"""

__version__ = "0.1.0"
