"""auto-lb: container-driven HAProxy controller.

Single-node controller that:
 - discovers running containers labeled ``lb.enable=Y`` through the docker API
 - groups them into frontends/backends keyed by publish port, bind address and TLS
 - renders haproxy.cfg from a Jinja2 template and skips reloads when nothing changed
 - supervises the haproxy master process: socket handover on reload, bounded crash restarts
"""

__version__ = "1.0.0"
