"""Registry of blockchain networks the payment contract is deployed on."""
from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class Chain:
    chain_id: int
    chain_name: str
    contract: str


CHAINS: Dict[int, Chain] = {
    8453: Chain(8453, "Base", "0x0574A0941Ca659D01CF7370E37492bd2DF43128d"),
    1135: Chain(1135, "Lisk", "0x7Ca0a469164655AF07d27cf4bdA5e77F36Ab820A"),
    42220: Chain(42220, "Celo", "0xBC955DC38a13c2Cd8736DA1bC791514504202F9D"),
}

SUPPORTED_CHAIN_IDS: List[int] = sorted(CHAINS)


def get_chain_name(chain_id: int) -> str:
    chain = CHAINS.get(chain_id)
    return chain.chain_name if chain else f"Unknown ({chain_id})"


def is_supported_chain(chain_id: int) -> bool:
    return chain_id in CHAINS
