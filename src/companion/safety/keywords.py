"""Crisis keyword sets and fixed safety responses per language.

Keywords are matched by case-insensitive substring containment. The
universal patterns catch common English crisis phrasing regardless of the
selected language. Response templates take a ``{hotline}`` placeholder
filled from configuration.
"""

from __future__ import annotations

import re

from src.companion.schemas.conversation import Language

TIER1_KEYWORDS: dict[Language, list[str]] = {
    Language.AMHARIC: [
        "ራሴን ልጨርስ",
        "ልሞት",
        "መሞት እፈልጋለሁ",
        "ሕይወቴን ላቆም",
        "ራሴን ልጉዳ",
        "ልጨርስ",
        "ትርጉም የለኝም",
        "ልሄድ",
    ],
    Language.OROMO: [
        "ofumaan fixuu",
        "du'uu barbaada",
        "lubbuun koo",
        "of miidhuu",
        "jireenya dhaabuu",
    ],
}

TIER2_KEYWORDS: dict[Language, list[str]] = {
    Language.AMHARIC: [
        "ተስፋ ቆርጫለሁ",
        "ሁሉ ነገር ጨለማ ነው",
        "መቀጠል አልችልም",
        "ክፉ ሃሳብ",
        "ምንም ፋይዳ የለኝም",
        "ሁሉ ሰው ይጠሉኛል",
        "ሳላለቅስ አልችልም",
        "ጨርሶ ደክሞኛል",
    ],
    Language.OROMO: [
        "abdii kutadhe",
        "itti fuudhuu hindandahu",
        "waa hundumaa gurraacha",
        "fayiidaa hinqabu",
        "hundi na jibbuu",
    ],
}

TIER3_KEYWORDS: dict[Language, list[str]] = {
    Language.AMHARIC: ["ብቻዬን ነኝ", "ማንም አይረዳኝም", "ትንሽ አልተኛም", "አልበላሁም"],
    Language.OROMO: ["kophaa koo", "namni na hin beekne", "hirriba dhorke"],
}

UNIVERSAL_PATTERNS: list[re.Pattern] = [
    re.compile(r"\b(die|kill myself|end it|no reason to live)\b", re.IGNORECASE),
    re.compile(r"\b(self.?harm|hurt myself)\b", re.IGNORECASE),
]

TIER1_RESPONSES: dict[Language, str] = {
    Language.AMHARIC: (
        "ይህን ካነበብኩ ልቤ ጠበብ አለ። አሁን ደህና ነህ/ሽ?\n\n"
        "ብቻህ/ሽ አትሁን። ወዲያውኑ ይደውሉ:\n"
        "📞 **የኢትዮጵያ የአእምሮ ጤና ሃኪም ቤት:** {hotline}\n"
        "📞 **ቤተሰብ ወይም ቅርብ ሰው አሁን ጥሪ አድርግ**\n\n"
        "ጎናህ/ሽ ነኝ። ትናገር/ትናገሪ ትችላለህ/ሽ።"
    ),
    Language.OROMO: (
        "Kan dubbifadhe boqonnaa koo na dhoorke. Amma nagaadhaa jirtaa?\n\n"
        "Kophaa hin tain. Amma bilbili:\n"
        "📞 **Hospitaala Fayyaa Sammuu Itoophiyaa:** {hotline}\n"
        "📞 **Maatii yookiin namni si dhiyaatu amma bilbili**\n\n"
        "Cinaa kee jira. Dubbachuu nidandeessa."
    ),
}

TIER2_RESPONSES: dict[Language, str] = {
    Language.AMHARIC: (
        "ብዙ ክብደት እያሸከምህ/ሽ እንደሆነ ተረዳሁ። ይህ ሁኔታ ከባድ ነው።\n\n"
        "ከቅርብ ሰው ጋር ማውራት ትፈልጋለህ/ሽ? ወይም ለሞያ ድጋፍ:\n"
        "📞 **{hotline}**\n\n"
        "አሁን እዚህ አሉ። ብቻህ/ሽ አይደለህ/ሽም።"
    ),
    Language.OROMO: (
        "Ulfaatina guddaa baataa akka jirtu nan hubadhe.\n\n"
        "Namni si dhiyaatu wajjin dubbachuu barbaaddaa? Deggarsa ogummaa:\n"
        "📞 **{hotline}**\n\n"
        "Kophaa miti. As jiru."
    ),
}

TIER3_INSTRUCTIONS: dict[Language, str] = {
    Language.AMHARIC: "ተጠቃሚው ብቸኝነት ሊሰማው ይችላል። በርኅርኅ ሁን እና ጥያቄ ጠይቅ።",
    Language.OROMO: "Fayyadamaan kophummaa dhaga'achuu danda'a. Rakkina isaaf obsaan deebii kennii.",
}
