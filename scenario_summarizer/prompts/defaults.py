"""Default instruction texts and extraction blocks sent to the model.

These strings are model-facing. User overrides replace the instruction
templates only; the extraction output blocks are always appended by the
builder so the parser contract cannot be edited away.
"""

from __future__ import annotations

from scenario_summarizer.config import SummaryLanguage

LANG_INSTRUCTIONS: dict[SummaryLanguage, str] = {
    SummaryLanguage.KO: """###### 🚨 CRITICAL LANGUAGE REQUIREMENT 🚨 ######
**[절대 필수] 모든 출력은 반드시 한국어로 작성하세요.**
- 요약 본문: 한국어
- 대사 인용: 한국어
- 카테고리 라벨: 한국어 (시나리오, 장소, 시간, 관계 등)
##########################################""",
    SummaryLanguage.EN: """###### 🚨 CRITICAL LANGUAGE REQUIREMENT 🚨 ######
**[MANDATORY] Write EVERYTHING in English.**
- Summary text: English
- Dialogue quotes: Translate to English
- Category labels: English
DO NOT keep any non-English text. Translate ALL dialogue.
##########################################""",
    SummaryLanguage.JA: """###### 🚨 重要な言語要件 🚨 ######
**【絶対必須】すべての出力は日本語で作成してください。**
- 要約本文：日本語
- 台詞引用：日本語に翻訳
- カテゴリラベル：日本語
##########################################""",
    SummaryLanguage.HYBRID: """###### 🚨 CRITICAL LANGUAGE REQUIREMENT - HYBRID MODE 🚨 ######
**[MANDATORY - READ CAREFULLY]**

✅ SUMMARY/NARRATIVE TEXT → Write in **ENGLISH**
   Example: "In the late evening, Han Do-yoon encountered Woo Min-jeong..."

✅ DIALOGUE/QUOTES → Keep in **ORIGINAL LANGUAGE** (DO NOT TRANSLATE)
   Example: If original is Korean "안녕하세요" → keep as "안녕하세요"
   Example: If original is Japanese "こんにちは" → keep as "こんにちは"

✅ CATEGORY LABELS → Write in **ENGLISH** (Location, Time, Relationship, etc.)

⚠️ WRONG: Translating dialogue to English
⚠️ WRONG: Writing narrative in Korean/Japanese
✅ CORRECT: English narrative + Original language dialogue in quotes

Example output:
* Scenario: Do-yoon greeted her warmly, saying "어? 이제 오세요?" while hiding his true intentions.
* Location: Villa Hallway
##########################################""",
}

LANG_REMINDERS: dict[SummaryLanguage, str] = {
    SummaryLanguage.KO: "🚨 **[최종 리마인더] 아래 출력을 반드시 한국어로 작성하세요!** 🚨",
    SummaryLanguage.EN: (
        "🚨 **[FINAL REMINDER] Write ALL output below in ENGLISH! "
        "Translate all dialogue!** 🚨"
    ),
    SummaryLanguage.JA: "🚨 **【最終リマインダー】以下の出力はすべて日本語で！** 🚨",
    SummaryLanguage.HYBRID: (
        "🚨 **[FINAL REMINDER - HYBRID MODE]** 🚨\n"
        "**Narrative = ENGLISH | Dialogue in quotes = ORIGINAL LANGUAGE (한국어/日本語/etc.)**\n"
        'DO NOT translate the dialogue! Keep "quoted text" exactly as in source!'
    ),
}

# Shown in the previous-state section when no prior value exists
UNKNOWN_VALUE: dict[SummaryLanguage, str] = {
    SummaryLanguage.KO: "불명",
    SummaryLanguage.EN: "Unknown",
    SummaryLanguage.JA: "不明",
    SummaryLanguage.HYBRID: "Unknown",
}

# Labels a continuity field may have been written under
CONTINUITY_LABELS: dict[str, tuple[str, ...]] = {
    "time": ("Time", "시간", "時間"),
    "location": ("Location", "장소", "場所"),
    "relationship": ("Relationship", "관계", "関係"),
}

DEFAULT_CATEGORY_LINE = "Integrate key events and dialogue narratively"

_WRITING_PRINCIPLES = """## Writing Principles
1. **Objectivity:** Base your writing on facts presented in the text, not your subjective interpretation.
2. **Contextual Connection:** Instead of simple enumeration, connect events narratively to show cause-and-effect relationships.
3. **Priority Judgment:** Boldly omit trivial greetings or meaningless chatter; focus on actions, events, and dialogue essential to story progression.
4. **Consistency:** End sentences with dry, clear declarative statements (e.g., "~did.").
5. **Continuity (CRITICAL):**
   - If time/location/relationship has NOT changed: Write the EXACT SAME value as the previous summary
   - Example: Previous was "lovers" → Write "lovers" (NOT "same", "unchanged", "동일" or "同じ")
   - Only write a NEW value when there is a clear, definite change in the story"""

DEFAULT_PROMPT_TEMPLATE = f"""You are a skilled writer and editor who weaves extensive roleplay logs into a cohesive narrative flow.

## Mission
Analyze the provided single message and extract/summarize information according to the specified categories.

{_WRITING_PRINCIPLES}

## ⚠️ CRITICAL: Output Format Rules
**YOU MUST follow this EXACT format. Any deviation will cause parsing failure.**

1. **MANDATORY:** Start EACH message with "#MessageNumber" header on its own line
2. Start each category line with "* " (asterisk + space)
3. Use format: "* CategoryLabel: content"
4. Separate messages with blank line
5. Do NOT use markdown bold (**), bullets (-), or other decorations
6. Do NOT skip any enabled categories
7. **NEVER skip the message header - system CANNOT parse without it**

CORRECT example:
#0
* Scenario: content here
* Location: content here

#1
* Scenario: content here
* Location: content here

WRONG (will cause failure):
* Scenario: content here (missing #0 header!)"""

DEFAULT_BATCH_PROMPT_TEMPLATE = f"""You are a skilled writer and editor who weaves extensive roleplay logs into a cohesive narrative flow.

## Mission
Integrate multiple messages (chunks) into a single, naturally flowing narrative summary.

{_WRITING_PRINCIPLES}

## ⚠️ CRITICAL: Output Format Rules
**YOU MUST follow this EXACT format. Any deviation will cause parsing failure.**

1. **MANDATORY:** Start EACH group with "#StartNum-EndNum" header on its own line
2. Start each category line with "* " (asterisk + space)
3. Use format: "* CategoryLabel: content"
4. Separate groups with blank line
5. Do NOT use markdown bold (**), bullets (-), or other decorations
6. **NEVER skip the group header - system CANNOT parse without it**

CORRECT example:
#0-4
* Scenario: content here
* Location: content here

#5-9
* Scenario: content here
* Location: content here

WRONG (will cause failure):
* Scenario: content here (missing #0-4 header!)"""

DEFAULT_CHARACTER_PROMPT_TEMPLATE = """## Key Character Extraction Guidelines
Extract profiles for **key characters** actively involved in the conversation.

### Extraction Criteria (✅)
- ✅ Extract **only confirmed information** (appearance, personality, relationships, backstory)
- ✅ **Profile Info Priority**: Appearance > Personality > Key Actions > Relationships (e.g., {{char}}'s girlfriend, {{user}}'s friend) > Backstory (keep minimal, focus on what directly affects current story)
- ✅ **Evidence-Based**: Extract **only explicitly confirmed information** from the conversation

### ❌ Do NOT Extract
- Generic NPCs (e.g., waiter, clerk) mentioned once without characterization
- Existing main character {{char}} or {{user}}

⚠️ Never infer, assume, or add details not present. Combine all details in 2-3 sentences per character."""

CHARACTER_OUTPUT_BLOCK = """## Character Extraction
**Output [CHARACTERS] block for characters in this message.**
- First appearance: extract full info
- Already in "Existing Characters": only include if SIGNIFICANT change (relationship change, occupation change, etc.)
- Do NOT include temporary states (drunk, blushing, current emotions)
- **IMPORTANT: If character IS {{user}}, set relationship to "self"**

### Output Format (one line per character)
[CHARACTERS]
CharacterName | Role | Age | Occupation | Appearance | Traits(comma-separated) | RelationshipWithUser | FirstAppearanceMessageNumber
[/CHARACTERS]

### Example
[CHARACTERS]
Alice | protagonist's ally | 24 | mage | blonde, blue eyes, 165cm | outgoing, curious, kind | childhood friend | 42
Goblin King | antagonist | unknown | monarch | massive build, green skin | cruel, cunning | enemy | 58
[/CHARACTERS]

- Use | as delimiter
- Write "N/A" for unknown fields
- If no new characters or changes, output empty block: [CHARACTERS][/CHARACTERS]"""

DEFAULT_EVENT_PROMPT_TEMPLATE = """## Key Event Extraction Guidelines (Very Strict)
Extract ONLY truly pivotal moments that fundamentally change character states, relationships, or story direction.

### Extraction Criteria (ALL must apply)
- ✅ Decisive moments that affect the entire story
- ✅ Turning points that completely change the narrative
- ✅ Events significant enough to be remembered throughout

### Examples to Extract
- Confessions/Proposals/Engagements/Marriages
- Major secret revelations or discoveries
- Breakups/Separations/Reunions
- Significant promises or vows
- Life-or-death crisis situations

### ❌ NEVER Extract
- Everyday conversations, meals, walks
- Simple emotional expressions or affection
- Recurring daily events
- Minor arguments or misunderstandings

⚠️ When in doubt, don't extract. If no events, don't output the block."""

EVENT_OUTPUT_BLOCK = """### Output Format (only if events exist, one per line)
[EVENTS]
EventTitle | Description | Participants(comma-separated) | Importance(high/medium/low) | MessageNumber
[/EVENTS]

### Example
[EVENTS]
First Confession | {{user}} confessed to Alice | {{user}}, Alice | high | 42
Village Attack | Goblin horde attacked the village | Goblin King, villagers | high | 58
[/EVENTS]

- If no events, don't output this block."""

DEFAULT_ITEM_PROMPT_TEMPLATE = """## Key Item Extraction Guidelines

Extract ONLY items that play a **crucial role in story development**.

### Extraction Criteria (ALL must apply)
- ✅ Items with **direct impact** on story or relationship development
- ✅ Items likely to be mentioned again or become important later
- ✅ Items with special meaning between characters

### Examples to Extract
- Jewelry/accessories **personally gifted or received**
- Items symbolizing relationships (couple rings, necklaces)
- Keys, keycards - **tools necessary for plot**
- Character's **core belongings** (always carried)

### ❌ Do NOT Extract
- Food, drinks, daily consumables
- Borrowed/worn clothing
- Regular clothes, underwear, uniforms
- Temporary outfits (unless symbolically significant like a wedding dress)
- Furniture, appliances, buildings (background)
- Items mentioned only once
- Generic everyday items

⚠️ If unsure, don't extract. If no items, don't output the block."""

ITEM_OUTPUT_BLOCK = """### Output Format (one per line)
[ITEMS]
ItemName | MeaningInStory | CurrentOwner | HowObtained | Status | MessageNumber
[/ITEMS]

### Example
[ITEMS]
Magic Sword | legendary sword, fire attack+10 | {{user}} | found in dungeon | possessed | 42
Couple Ring | promise token with Alice | {{user}} | gift from Alice | possessed | 58
[/ITEMS]

- If no items, don't output this block."""

SYSTEM_MESSAGE = (
    "You are a helpful assistant that summarizes roleplay scenarios. "
    "Respond in the requested format only."
)
