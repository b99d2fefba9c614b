"""
Trait normalization and rarity scoring for NFT collections.

Scoring model:
    score(nft) = sum(1 / frequency[trait_type:value] for each attribute)

Frequencies are counted over the whole collection, including the NFT being
scored. Higher score means rarer; rank 1 is the rarest item.

Known data defect:
    The marketplace capitalizes the head "Crown" trait inconsistently
    ("Crown", "crown", "CROWN", ...), which splits one trait into several
    frequency buckets. Only that trait/value pair is folded to "crown";
    every other value is left exactly as received.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from nft_rarity.core.errors import RarityComputationError
from nft_rarity.scraper.marketplace import Attribute, NFTRecord

CROWN_TRAIT_TYPE = "head"
CROWN_VALUE = "crown"


@dataclass(frozen=True)
class RankedNFTRecord:
    """An NFT with its recomputed rarity score, rank and percentile."""

    nft: NFTRecord
    corrected_rarity: float
    corrected_rank: int
    rarity_pct: float

    @property
    def serial_id(self) -> int:
        return self.nft.serial_id

    @property
    def original_rarity(self) -> Optional[float]:
        return self.nft.rarity

    @property
    def original_rank(self) -> Optional[int]:
        return self.nft.rarity_rank

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.nft.to_dict(),
            "originalRarity": self.original_rarity,
            "originalRank": self.original_rank,
            "correctedRarity": self.corrected_rarity,
            "correctedRank": self.corrected_rank,
            "rarityPct": self.rarity_pct,
        }


def normalize_attribute(attr: Attribute) -> Attribute:
    if attr.trait_type.lower() == CROWN_TRAIT_TYPE and attr.value.lower() == CROWN_VALUE:
        if attr.value != CROWN_VALUE:
            return replace(attr, value=CROWN_VALUE)
    return attr


def normalize_traits(nft: NFTRecord) -> NFTRecord:
    """Returns the NFT with the head/crown capitalization folded. Idempotent."""
    return replace(nft, attributes=tuple(normalize_attribute(attr) for attr in nft.attributes))


def normalize_collection(nfts: Iterable[NFTRecord]) -> List[NFTRecord]:
    return [normalize_traits(nft) for nft in nfts]


def calculate_trait_frequencies(nfts: Iterable[NFTRecord]) -> Dict[str, int]:
    """
    Counts every attribute entry across the collection.

    A trait repeated within one NFT counts once per occurrence.
    """
    frequencies: Dict[str, int] = {}
    for nft in nfts:
        for attr in nft.attributes:
            frequencies[attr.key] = frequencies.get(attr.key, 0) + 1
    return frequencies


def calculate_rarity_score(nft: NFTRecord, frequencies: Dict[str, int]) -> float:
    """Sum of inverse trait frequencies. Unknown keys count as frequency 1."""
    score = 0.0
    for attr in nft.attributes:
        score += 1 / frequencies.get(attr.key, 1)
    return score


def rank_collection(nfts: Sequence[NFTRecord]) -> List[RankedNFTRecord]:
    """
    Normalizes, scores and ranks a full collection.

    Sorting is stable, so exact score ties keep their input order (the
    marketplace's own rarity order). Ranks are 1..N with no gaps and
    rarity_pct = rank / N * 100.

    Raises:
        RarityComputationError: if any step fails
    """
    try:
        normalized = normalize_collection(nfts)
        frequencies = calculate_trait_frequencies(normalized)
        scored = [(nft, calculate_rarity_score(nft, frequencies)) for nft in normalized]
        scored.sort(key=lambda pair: pair[1], reverse=True)

        total = len(scored)
        return [
            RankedNFTRecord(
                nft=nft,
                corrected_rarity=score,
                corrected_rank=index + 1,
                rarity_pct=(index + 1) / total * 100,
            )
            for index, (nft, score) in enumerate(scored)
        ]
    except RarityComputationError:
        raise
    except Exception as e:
        raise RarityComputationError(f"Rarity computation failed: {type(e).__name__}") from e
