"""Curated question bank keyed by (category, difficulty).

Every item carries a stable ``key`` (stored on the provisioned question for
audit) and the session kinds it suits. Coding items define the function the
candidate must implement via ``entrypoint``; a dict ``input`` is passed as
keyword arguments, anything else as the single positional argument.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ...models.assessment_session import Difficulty, QuestionType, SessionCategory, SessionKind

MOCK = SessionKind.MOCK_INTERVIEW.value
SKILLS = SessionKind.SKILLS_TEST.value

BankItem = Dict[str, Any]


def _coding(key, prompt, entrypoint, test_cases, hints, sample_answer, weight=1.0) -> BankItem:
    return {
        "key": key,
        "question_type": QuestionType.CODING.value,
        "kinds": (MOCK, SKILLS),
        "prompt": prompt,
        "entrypoint": entrypoint,
        "test_cases": test_cases,
        "hints": hints,
        "sample_answer": sample_answer,
        "weight": weight,
    }


def _open(key, qtype, prompt, hints, sample_answer, keywords=None, weight=1.0) -> BankItem:
    return {
        "key": key,
        "question_type": qtype,
        "kinds": (MOCK,),
        "prompt": prompt,
        "hints": hints,
        "sample_answer": sample_answer,
        "keywords": keywords,
        "weight": weight,
    }


def _choice(key, qtype, prompt, correct_answer, options=None, keywords=None, weight=1.0) -> BankItem:
    return {
        "key": key,
        "question_type": qtype,
        "kinds": (SKILLS,),
        "prompt": prompt,
        "options": options,
        "correct_answer": correct_answer,
        "keywords": keywords,
        "weight": weight,
    }


TECHNICAL_EASY: List[BankItem] = [
    _coding(
        "tech-easy-find-max",
        "Write a function find_max(nums) that returns the largest number in a non-empty list of integers "
        "without using the built-in max().",
        "find_max",
        [
            {"input": [1, 5, 3, 9, 2], "expected": 9, "description": "mixed positive numbers"},
            {"input": [-10, -5, -20], "expected": -5, "description": "all negative numbers"},
            {"input": [42], "expected": 42, "description": "single element"},
        ],
        ["Track the largest value seen so far", "Start from the first element, not zero"],
        "def find_max(nums):\n    best = nums[0]\n    for n in nums[1:]:\n        if n > best:\n            best = n\n    return best",
    ),
    _coding(
        "tech-easy-reverse-string",
        "Write a function reverse_string(s) that returns the string reversed.",
        "reverse_string",
        [
            {"input": "hello", "expected": "olleh", "description": "simple word"},
            {"input": "", "expected": "", "description": "empty string"},
            {"input": "a b c", "expected": "c b a", "description": "string with spaces"},
        ],
        ["Slicing with a negative step reverses a sequence"],
        "def reverse_string(s):\n    return s[::-1]",
    ),
    _coding(
        "tech-easy-palindrome",
        "Write a function is_palindrome(s) that returns True if s reads the same forwards and backwards, "
        "ignoring case and non-alphanumeric characters.",
        "is_palindrome",
        [
            {"input": "racecar", "expected": True, "description": "odd-length palindrome"},
            {"input": "A man, a plan, a canal: Panama", "expected": True, "description": "punctuation and case"},
            {"input": "hello", "expected": False, "description": "not a palindrome"},
        ],
        ["Normalise the string first", "Compare with its reverse or use two pointers"],
        "def is_palindrome(s):\n    cleaned = [c.lower() for c in s if c.isalnum()]\n    return cleaned == cleaned[::-1]",
    ),
    _coding(
        "tech-easy-count-vowels",
        "Write a function count_vowels(s) that returns how many vowels (a, e, i, o, u, any case) appear in s.",
        "count_vowels",
        [
            {"input": "Hello World", "expected": 3, "description": "mixed case"},
            {"input": "rhythm", "expected": 0, "description": "no vowels"},
            {"input": "AEIOU", "expected": 5, "description": "only uppercase vowels"},
        ],
        ["Lower-case the string once", "A set makes membership checks cheap"],
        "def count_vowels(s):\n    return sum(1 for c in s.lower() if c in 'aeiou')",
    ),
    _choice(
        "tech-easy-mc-list-append",
        QuestionType.MULTIPLE_CHOICE.value,
        "What is the average time complexity of appending an item to a Python list?",
        "O(1)",
        options=["O(1)", "O(log n)", "O(n)", "O(n log n)"],
    ),
    _choice(
        "tech-easy-tf-tuple",
        QuestionType.TRUE_FALSE.value,
        "True or false: Python tuples are mutable.",
        False,
    ),
    _choice(
        "tech-easy-short-http",
        QuestionType.SHORT_ANSWER.value,
        "Which HTTP status code means 'Not Found'?",
        "404",
    ),
]

TECHNICAL_MEDIUM: List[BankItem] = [
    _coding(
        "tech-medium-two-sum",
        "Write a function two_sum(nums, target) that returns the indices [i, j] (i < j) of the two numbers "
        "in nums that add up to target. Exactly one solution exists.",
        "two_sum",
        [
            {"input": {"nums": [2, 7, 11, 15], "target": 9}, "expected": [0, 1], "description": "first two elements"},
            {"input": {"nums": [3, 2, 4], "target": 6}, "expected": [1, 2], "description": "solution not at start"},
            {"input": {"nums": [3, 3], "target": 6}, "expected": [0, 1], "description": "duplicate values"},
        ],
        ["A dictionary from value to index gives O(n) time", "Check for the complement before storing the current value"],
        "def two_sum(nums, target):\n    seen = {}\n    for i, n in enumerate(nums):\n        if target - n in seen:\n            return [seen[target - n], i]\n        seen[n] = i\n    return []",
    ),
    _coding(
        "tech-medium-longest-substring",
        "Write a function length_of_longest_substring(s) that returns the length of the longest substring "
        "without repeating characters.",
        "length_of_longest_substring",
        [
            {"input": "abcabcbb", "expected": 3, "description": "repeating pattern"},
            {"input": "bbbbb", "expected": 1, "description": "single repeated character"},
            {"input": "pwwkew", "expected": 3, "description": "answer in the middle"},
            {"input": "", "expected": 0, "description": "empty string"},
        ],
        ["Use a sliding window", "Remember the last index where each character appeared"],
        "def length_of_longest_substring(s):\n    last = {}\n    start = best = 0\n    for i, c in enumerate(s):\n        if c in last and last[c] >= start:\n            start = last[c] + 1\n        last[c] = i\n        best = max(best, i - start + 1)\n    return best",
    ),
    _coding(
        "tech-medium-valid-parentheses",
        "Write a function is_valid(s) that returns True if the brackets ()[]{} in s are balanced and "
        "correctly nested.",
        "is_valid",
        [
            {"input": "()[]{}", "expected": True, "description": "adjacent pairs"},
            {"input": "([{}])", "expected": True, "description": "nested pairs"},
            {"input": "(]", "expected": False, "description": "mismatched pair"},
            {"input": "((", "expected": False, "description": "unclosed brackets"},
        ],
        ["A stack tracks the open brackets", "Map each closing bracket to its opener"],
        "def is_valid(s):\n    pairs = {')': '(', ']': '[', '}': '{'}\n    stack = []\n    for c in s:\n        if c in pairs:\n            if not stack or stack.pop() != pairs[c]:\n                return False\n        else:\n            stack.append(c)\n    return not stack",
    ),
    _coding(
        "tech-medium-merge-intervals",
        "Write a function merge_intervals(intervals) that merges all overlapping [start, end] intervals and "
        "returns them sorted by start.",
        "merge_intervals",
        [
            {"input": [[1, 3], [2, 6], [8, 10], [15, 18]], "expected": [[1, 6], [8, 10], [15, 18]], "description": "one overlap"},
            {"input": [[1, 4], [4, 5]], "expected": [[1, 5]], "description": "touching intervals"},
            {"input": [[5, 7], [1, 2]], "expected": [[1, 2], [5, 7]], "description": "unsorted input"},
        ],
        ["Sort by start first", "Extend the last merged interval while they overlap"],
        "def merge_intervals(intervals):\n    merged = []\n    for start, end in sorted(intervals):\n        if merged and start <= merged[-1][1]:\n            merged[-1][1] = max(merged[-1][1], end)\n        else:\n            merged.append([start, end])\n    return merged",
    ),
    _choice(
        "tech-medium-ms-hashable",
        QuestionType.MULTIPLE_SELECT.value,
        "Which of the following built-in types can be used as dictionary keys?",
        ["tuple", "str", "frozenset"],
        options=["tuple", "list", "str", "frozenset", "dict"],
    ),
    _choice(
        "tech-medium-mc-idempotent",
        QuestionType.MULTIPLE_CHOICE.value,
        "Which HTTP method is NOT idempotent by definition?",
        "POST",
        options=["GET", "PUT", "DELETE", "POST"],
    ),
    _choice(
        "tech-medium-short-gil",
        QuestionType.SHORT_ANSWER.value,
        "In one or two sentences, explain what the CPython Global Interpreter Lock prevents.",
        None,
        keywords=["thread", "bytecode", "one"],
    ),
]

TECHNICAL_HARD: List[BankItem] = [
    _coding(
        "tech-hard-edit-distance",
        "Write a function edit_distance(a, b) that returns the minimum number of single-character inserts, "
        "deletes or substitutions needed to turn string a into string b.",
        "edit_distance",
        [
            {"input": {"a": "horse", "b": "ros"}, "expected": 3, "description": "classic example"},
            {"input": {"a": "intention", "b": "execution"}, "expected": 5, "description": "longer words"},
            {"input": {"a": "", "b": "abc"}, "expected": 3, "description": "empty source"},
        ],
        ["Dynamic programming over prefixes", "Only the previous row is needed"],
        "def edit_distance(a, b):\n    prev = list(range(len(b) + 1))\n    for i, ca in enumerate(a, 1):\n        cur = [i]\n        for j, cb in enumerate(b, 1):\n            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))\n        prev = cur\n    return prev[-1]",
        weight=1.5,
    ),
    _coding(
        "tech-hard-trap-water",
        "Write a function trap(heights) that returns how much rain water is trapped between the bars of the "
        "given elevation map.",
        "trap",
        [
            {"input": [0, 1, 0, 2, 1, 0, 1, 3, 2, 1, 2, 1], "expected": 6, "description": "standard map"},
            {"input": [4, 2, 0, 3, 2, 5], "expected": 9, "description": "deep basin"},
            {"input": [1, 2, 3], "expected": 0, "description": "monotonic heights"},
        ],
        ["Water above a bar is bounded by the lower of the max heights on each side", "Two pointers give O(1) space"],
        "def trap(heights):\n    left, right = 0, len(heights) - 1\n    lmax = rmax = water = 0\n    while left < right:\n        if heights[left] < heights[right]:\n            lmax = max(lmax, heights[left])\n            water += lmax - heights[left]\n            left += 1\n        else:\n            rmax = max(rmax, heights[right])\n            water += rmax - heights[right]\n            right -= 1\n    return water",
        weight=1.5,
    ),
    _coding(
        "tech-hard-lis",
        "Write a function longest_increasing_subsequence(nums) that returns the length of the longest strictly "
        "increasing subsequence in nums.",
        "longest_increasing_subsequence",
        [
            {"input": [10, 9, 2, 5, 3, 7, 101, 18], "expected": 4, "description": "mixed sequence"},
            {"input": [0, 1, 0, 3, 2, 3], "expected": 4, "description": "repeated values"},
            {"input": [7, 7, 7], "expected": 1, "description": "all equal"},
        ],
        ["An O(n log n) solution keeps the smallest tail for each length", "bisect helps find the position"],
        "from bisect import bisect_left\n\ndef longest_increasing_subsequence(nums):\n    tails = []\n    for n in nums:\n        i = bisect_left(tails, n)\n        if i == len(tails):\n            tails.append(n)\n        else:\n            tails[i] = n\n    return len(tails)",
        weight=1.5,
    ),
    _choice(
        "tech-hard-mc-isolation",
        QuestionType.MULTIPLE_CHOICE.value,
        "Which transaction isolation level prevents phantom reads under the SQL standard?",
        "Serializable",
        options=["Read uncommitted", "Read committed", "Repeatable read", "Serializable"],
    ),
    _choice(
        "tech-hard-ms-consistency",
        QuestionType.MULTIPLE_SELECT.value,
        "Which techniques help make a message consumer safe under at-least-once delivery?",
        ["Idempotency keys", "Deduplication table", "Conditional writes"],
        options=["Idempotency keys", "Deduplication table", "Larger batch sizes", "Conditional writes", "Longer timeouts"],
    ),
    _choice(
        "tech-hard-tf-asyncio",
        QuestionType.TRUE_FALSE.value,
        "True or false: a CPU-bound function called inside an asyncio coroutine blocks the event loop.",
        True,
    ),
]

BEHAVIORAL_EASY: List[BankItem] = [
    _open(
        "behav-easy-about-you",
        QuestionType.BEHAVIORAL.value,
        "Tell me about yourself and why you are interested in this role.",
        ["Keep it to two minutes", "Connect your experience to the role"],
        "A concise narrative covering current role, two or three relevant achievements and a clear link to the target position.",
    ),
    _open(
        "behav-easy-teamwork",
        QuestionType.BEHAVIORAL.value,
        "Describe a time you worked effectively as part of a team.",
        ["Use the STAR method", "Be specific about your own contribution"],
        "Situation and goal of the team, the candidate's specific responsibilities, how they collaborated, and a measurable result.",
    ),
    _choice(
        "behav-easy-mc-feedback",
        QuestionType.MULTIPLE_CHOICE.value,
        "A teammate gives you critical feedback on your pull request in a public channel. What is the best first response?",
        "Thank them and discuss the points, moving detail to a direct conversation if needed",
        options=[
            "Ignore it",
            "Argue each point in the channel",
            "Thank them and discuss the points, moving detail to a direct conversation if needed",
            "Escalate to your manager",
        ],
    ),
]

BEHAVIORAL_MEDIUM: List[BankItem] = [
    _open(
        "behav-medium-challenge",
        QuestionType.BEHAVIORAL.value,
        "Tell me about a challenging project you worked on and how you overcame the obstacles.",
        ["Use the STAR method", "Focus on your specific contributions", "Quantify the results"],
        "A structured story with clear situation, task, concrete actions and measurable results, including what was learned.",
    ),
    _open(
        "behav-medium-conflict",
        QuestionType.BEHAVIORAL.value,
        "Describe a disagreement with a colleague about a technical decision. How was it resolved?",
        ["Show empathy for the other view", "Explain how the decision was finally made"],
        "Describes both positions fairly, how data or prototypes were used to decide, and a respectful resolution.",
    ),
    _open(
        "behav-medium-failure",
        QuestionType.BEHAVIORAL.value,
        "Tell me about a time you failed. What did you learn?",
        ["Own the mistake", "Spend most of the answer on what changed afterwards"],
        "Honest account of a real failure, personal ownership, and specific changes in behaviour afterwards.",
    ),
    _choice(
        "behav-medium-mc-deadline",
        QuestionType.MULTIPLE_CHOICE.value,
        "Midway through a sprint you realise a committed feature will miss its deadline. What should you do first?",
        "Tell stakeholders early with options for scope or timeline",
        options=[
            "Work overtime silently",
            "Tell stakeholders early with options for scope or timeline",
            "Ship it without tests",
            "Wait until the sprint review",
        ],
    ),
]

BEHAVIORAL_HARD: List[BankItem] = [
    _open(
        "behav-hard-influence",
        QuestionType.BEHAVIORAL.value,
        "Describe a time you had to influence a decision without formal authority.",
        ["Explain how you built alignment", "Show the outcome and its impact"],
        "Identifies stakeholders and their incentives, uses evidence and relationships to persuade, and reports the impact.",
    ),
    _open(
        "behav-hard-ambiguity",
        QuestionType.BEHAVIORAL.value,
        "Tell me about a time you led a project with unclear requirements. How did you create clarity?",
        ["Describe how you reduced ambiguity step by step"],
        "Shows hypothesis-driven scoping, early stakeholder validation, iterative delivery and explicit decision records.",
    ),
    _choice(
        "behav-hard-ms-incident",
        QuestionType.MULTIPLE_SELECT.value,
        "You are leading a production incident. Which actions belong in the first thirty minutes?",
        ["Assign an incident commander", "Communicate status to stakeholders", "Mitigate customer impact"],
        options=[
            "Assign an incident commander",
            "Write the full postmortem",
            "Communicate status to stakeholders",
            "Mitigate customer impact",
            "Refactor the failing module",
        ],
    ),
]

SYSTEM_DESIGN_EASY: List[BankItem] = [
    _open(
        "design-easy-url-shortener",
        QuestionType.SYSTEM_DESIGN.value,
        "Design a URL shortening service like bit.ly.",
        ["Start with requirements", "Think about key generation and storage"],
        "Covers functional requirements, short-key generation (hash or counter with base62), a key-value store, caching hot links and redirect latency.",
        keywords=["hash", "database", "cache", "redirect"],
    ),
    _choice(
        "design-easy-mc-cache",
        QuestionType.MULTIPLE_CHOICE.value,
        "Which component is most commonly placed in front of a database to reduce read latency?",
        "A cache such as Redis",
        options=["A message queue", "A cache such as Redis", "A load balancer", "A CDN for writes"],
    ),
]

SYSTEM_DESIGN_MEDIUM: List[BankItem] = [
    _open(
        "design-medium-chat",
        QuestionType.SYSTEM_DESIGN.value,
        "Design a real-time chat application that supports one-to-one and group messages.",
        ["Consider connection management", "Think about message ordering and delivery"],
        "Persistent connections (WebSockets), a message service with per-conversation ordering, storage partitioned by conversation, presence, offline delivery and fan-out for groups.",
        keywords=["websocket", "queue", "database", "scal"],
    ),
    _open(
        "design-medium-rate-limiter",
        QuestionType.SYSTEM_DESIGN.value,
        "Design a rate limiter for a public API.",
        ["Compare token bucket and sliding window", "Where does the state live?"],
        "Algorithm choice with trade-offs, shared state in a low-latency store, per-key limits, response headers and behaviour under store failure.",
        keywords=["token bucket", "window", "redis"],
    ),
    _choice(
        "design-medium-tf-cap",
        QuestionType.TRUE_FALSE.value,
        "True or false: under a network partition a distributed store must choose between consistency and availability.",
        True,
    ),
]

SYSTEM_DESIGN_HARD: List[BankItem] = [
    _open(
        "design-hard-news-feed",
        QuestionType.SYSTEM_DESIGN.value,
        "Design the news feed for a social network with hundreds of millions of users.",
        ["Fan-out on write vs fan-out on read", "Handle celebrity accounts separately"],
        "Hybrid fan-out, ranked feed storage, caching, pagination, celebrity handling and consistency expectations.",
        keywords=["fan-out", "cache", "ranking", "shard"],
        weight=1.5,
    ),
    _open(
        "design-hard-payments",
        QuestionType.SYSTEM_DESIGN.value,
        "Design a payment processing system that never charges a customer twice.",
        ["Idempotency is central", "Think about reconciliation"],
        "Idempotency keys, a double-entry ledger, state machine per payment, retries with backoff, reconciliation with the processor and auditability.",
        keywords=["idempotency", "ledger", "retry", "reconcil"],
        weight=1.5,
    ),
    _choice(
        "design-hard-mc-consensus",
        QuestionType.MULTIPLE_CHOICE.value,
        "Which algorithm is designed for replicated log consensus and is used by etcd?",
        "Raft",
        options=["Gossip", "Raft", "Two-phase locking", "Vector clocks"],
    ),
]

QUESTION_BANK: Dict[Tuple[str, str], List[BankItem]] = {
    (SessionCategory.TECHNICAL.value, Difficulty.EASY.value): TECHNICAL_EASY,
    (SessionCategory.TECHNICAL.value, Difficulty.MEDIUM.value): TECHNICAL_MEDIUM,
    (SessionCategory.TECHNICAL.value, Difficulty.HARD.value): TECHNICAL_HARD,
    (SessionCategory.BEHAVIORAL.value, Difficulty.EASY.value): BEHAVIORAL_EASY,
    (SessionCategory.BEHAVIORAL.value, Difficulty.MEDIUM.value): BEHAVIORAL_MEDIUM,
    (SessionCategory.BEHAVIORAL.value, Difficulty.HARD.value): BEHAVIORAL_HARD,
    (SessionCategory.SYSTEM_DESIGN.value, Difficulty.EASY.value): SYSTEM_DESIGN_EASY,
    (SessionCategory.SYSTEM_DESIGN.value, Difficulty.MEDIUM.value): SYSTEM_DESIGN_MEDIUM,
    (SessionCategory.SYSTEM_DESIGN.value, Difficulty.HARD.value): SYSTEM_DESIGN_HARD,
}

DIFFICULTY_ORDER = [Difficulty.EASY.value, Difficulty.MEDIUM.value, Difficulty.HARD.value]

MIXED_SOURCES = (
    SessionCategory.TECHNICAL.value,
    SessionCategory.BEHAVIORAL.value,
    SessionCategory.SYSTEM_DESIGN.value,
)


def bank_items(category: str, difficulty: str, kind: str) -> List[BankItem]:
    """Items for one tier that suit ``kind``, in bank order."""
    categories = MIXED_SOURCES if category == SessionCategory.MIXED.value else (category,)
    items: List[BankItem] = []
    for cat in categories:
        for item in QUESTION_BANK.get((cat, difficulty), []):
            if kind in item["kinds"]:
                items.append(dict(item, category=cat, difficulty=difficulty))
    return items


def adjacent_difficulties(difficulty: str) -> List[str]:
    if difficulty not in DIFFICULTY_ORDER:
        return []
    index = DIFFICULTY_ORDER.index(difficulty)
    return [DIFFICULTY_ORDER[i] for i in (index - 1, index + 1) if 0 <= i < len(DIFFICULTY_ORDER)]
