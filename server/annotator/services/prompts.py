"""System prompts for the three annotation kinds.

Every prompt asks for one numbered record per input line (``1: ...``), which
is the shape the streaming engine's record pattern expects.
"""

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "ja": "Japanese (日本語)",
    "ko": "Korean (한국어)",
    "zh-TW": "Traditional Chinese (繁體中文)",
    "zh-CN": "Simplified Chinese (简体中文)",
    "zh": "Chinese (中文)",
    "es": "Spanish (Español)",
    "fr": "French (Français)",
    "de": "German (Deutsch)",
    "pt": "Portuguese (Português)",
    "it": "Italian (Italiano)",
    "ru": "Russian (Русский)",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def translation_system_prompt(language: str) -> str:
    name = language_name(language)
    return f"""Translate ALL lyrics to {name} (one line per input line).

IMPORTANT: Translate from ANY source language (Korean, Japanese, Chinese, English, etc.) to {name}.
- Korean (한국어) lyrics → translate to {name}
- Japanese (日本語) lyrics → translate to {name}
- Chinese (中文) lyrics → translate to {name}
- English lyrics → translate to {name}
- If a line is ALREADY in {name}, keep it as-is.

Output format: Number each line like "1: translation", "2: translation", etc.
For instrumental lines (e.g., "---"), return original.
Preserve artistic intent and rhythm. Don't add punctuation at end of lines.

Example output format:
1: First translated line
2: Second translated line
3: Third translated line"""


FURIGANA_SYSTEM_PROMPT = """Add furigana to kanji using ruby markup format: <text:reading>

Format: <漢字:ふりがな> - text first, then reading after colon
- Plain text without reading stays as-is
- Separate okurigana: <走:はし>る (NOT <走る:はしる>)

Output format: Number each line like "1: annotated line", "2: annotated line", etc.

Example:
Input:
1: 夜空の星
2: 私は走る

Output:
1: <夜空:よぞら>の<星:ほし>
2: <私:わたし>は<走:はし>る"""


SORAMIMI_CHINESE_PROMPT = """Create 空耳 (soramimi) - Chinese "misheard lyrics" (繁體字) that SOUND like Japanese/Korean lyrics while carrying poetic meaning.

CRITICAL RULES:
1. You MUST wrap EVERY non-English word in <original:chinese> format
2. Chinese readings must be ONLY Chinese characters - no Hangul or kana!
3. English words stay unwrapped (no angle brackets)

Format: <original_text:chinese_phonetic_reading>

EXAMPLE INPUT:
1: Oh|no|시간이|갈수록|널
2: 사랑해요

EXAMPLE OUTPUT:
1: Oh no <시간이:時光裡> <갈수록:割愁錄> <널:念>
2: <사랑해요:思浪海喲>

Find Chinese characters that BOTH sound right AND carry meaning. The sound
must stay close (same initial/final): 와 (wa) → 哇/娃, never 來 (lái).
Korean compound endings carry several sounds; include all of them:
<겠어:結梭>, never <겠어:結>.

RULES:
1. EVERY non-English word MUST be wrapped: <word:chinese>
2. English words stay plain (unwrapped)
3. If input has | between words, wrap each segment separately
4. Output one numbered line per input line
5. NEVER output plain Korean/Japanese without <:> wrapper!
6. Prefer compound words over single characters when phonetically possible"""


SORAMIMI_CHINESE_WITH_FURIGANA_PROMPT = """Create 空耳 (soramimi) - Chinese "misheard lyrics" (繁體字) that SOUND like Japanese/Korean lyrics while carrying poetic meaning.

You are given text with:
- Japanese with furigana in parentheses: 私(わたし) means 私 is read as "わたし"
- Korean words (no furigana needed - read as-is)
- Segments separated by | (pipe)

CRITICAL RULES:
1. You MUST wrap EVERY Japanese AND Korean segment in <original:chinese> format
2. Chinese readings must be ONLY Chinese characters - no kana or hangul!
3. Use furigana for Japanese pronunciation, read Korean as-is
4. Do NOT include parentheses in output

EXAMPLE INPUT:
1: 私(わたし)|は|好き(すき)|だよ
2: 사랑|해요
3: 夢(ゆめ)|を|見(み)|た

EXAMPLE OUTPUT:
1: <私:我他希><は:哈><好き:宿期><だよ:搭喲>
2: <사랑:思浪><해요:海喲>
3: <夢:欲夢><を:喔><見:迷><た:塔>

KANA GUIDE:
- あ→阿, い→衣, う→屋, え→欸, お→喔
- か→咖, き→奇, く→酷, け→給, こ→口
- さ→撒, し→西, す→蘇, せ→些, そ→搜
- た→他, ち→吃, つ→此, て→貼, と→頭
- っ/ッ → ～

RULES:
1. EVERY Japanese AND Korean segment MUST be wrapped: <segment:chinese>
2. Remove furigana parentheses from output
3. English words stay unwrapped
4. Output one numbered line per input line
5. NEVER output plain Japanese or Korean without <:> wrapper!"""


SORAMIMI_ENGLISH_PROMPT = """Create English "misheard lyrics" (soramimi) - English words that SOUND like Japanese/Korean/Chinese lyrics.

CRITICAL RULES:
1. You MUST wrap EVERY non-English word in <original:english> format
2. Use real English words that sound like the original
3. English words in lyrics stay unwrapped

EXAMPLE INPUT:
1: 시간이|갈수록|널
2: 사랑해요
3: Fire in the water

EXAMPLE OUTPUT:
1: <시간이:she gone knee> <갈수록:gal sue rock> <널:null>
2: <사랑해요:saw wrong hey yo>
3: Fire in the water

RULES:
1. EVERY non-English word MUST be wrapped: <word:english>
2. English words in original lyrics stay plain (unwrapped)
3. Use spaces between English words for readability
4. Output one numbered line per input line
5. NEVER output plain Korean/Japanese/Chinese without <:> wrapper!"""


SORAMIMI_ENGLISH_WITH_FURIGANA_PROMPT = """Create English "misheard lyrics" (soramimi) - English words that SOUND like Japanese/Korean lyrics.

You are given text with:
- Japanese with furigana in parentheses: 私(わたし) means 私 is read as "わたし"
- Korean words (no furigana needed - read as-is)
- Segments separated by | (pipe)

EXAMPLE INPUT:
1: 私(わたし)|が|好き(すき)|だよ
2: 사랑|해요

EXAMPLE OUTPUT:
1: <私:what a she><が:ga><好き:ski><だよ:die yo>
2: <사랑:saw wrong><해요:hey yo>

RULES:
1. EVERY Japanese AND Korean segment MUST be wrapped: <segment:english>
2. Remove furigana parentheses from output
3. English words in original lyrics stay unwrapped
4. Output one numbered line per input line
5. NEVER output plain Japanese or Korean without <:> wrapper!"""


def soramimi_system_prompt(target_language: str, with_furigana: bool) -> str:
    if target_language == "en":
        return SORAMIMI_ENGLISH_WITH_FURIGANA_PROMPT if with_furigana else SORAMIMI_ENGLISH_PROMPT
    return SORAMIMI_CHINESE_WITH_FURIGANA_PROMPT if with_furigana else SORAMIMI_CHINESE_PROMPT


def numbered(texts: list[str]) -> str:
    """Render texts as the dense 1-based numbered block the prompts describe."""
    return "\n".join(f"{i}: {text}" for i, text in enumerate(texts, start=1))
