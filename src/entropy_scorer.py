"""
Entropy Scorer
Shannon entropy of candidate strings, used to gate noisy secret rules
"""

import math
from collections import Counter


class EntropyScorer:
    """Scores how random a captured string looks"""

    @staticmethod
    def calculate_entropy(data: str) -> float:
        """Calculate Shannon entropy of a string (bits per character)"""
        if not data:
            return 0.0

        length = len(data)
        entropy = 0.0
        # Sorted so the float sum does not depend on character order
        for count in sorted(Counter(data).values()):
            p = count / length
            entropy -= p * math.log2(p)

        return entropy

    @classmethod
    def passes_gate(cls, value: str, min_entropy: float) -> bool:
        """
        Check a captured value against a rule's entropy gate.

        Normal English text: ~3.5-4.0 bits/char
        Random hex: ~4.0 bits/char
        Base64: ~5.5-6.0 bits/char
        """
        if not min_entropy:
            return True
        return cls.calculate_entropy(value) >= min_entropy


shannon_entropy = EntropyScorer.calculate_entropy
