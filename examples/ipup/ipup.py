"""IPUP deployment module.

Deploy with:
    chainplan deploy examples/ipup/ipup.py --network subnet -c examples/ipup/chainplan.yaml
"""

from chainplan.modules.builder import build_module

IPUPModule = build_module("IPUPModule", lambda m: {"ipup": m.contract("IPUP")})
