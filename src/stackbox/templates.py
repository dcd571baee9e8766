"""Scaffold files for frontends that ship without their own tooling files."""

import json
import re
from typing import Dict

NEXT_VERSION = "14.0.4"

TAILWIND_CONFIG = """/** @type {import('tailwindcss').Config} */
module.exports = {
  content: [
    './pages/**/*.{js,ts,jsx,tsx,mdx}',
    './components/**/*.{js,ts,jsx,tsx,mdx}',
    './app/**/*.{js,ts,jsx,tsx,mdx}',
  ],
  theme: {
    extend: {},
  },
  plugins: [],
}
"""

POSTCSS_CONFIG = """module.exports = {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  }
}
"""

NEXT_CONFIG = """/** @type {import('next').NextConfig} */
const nextConfig = {}
module.exports = nextConfig
"""

GLOBALS_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;
"""

LAYOUT_TSX = """import './globals.css'

export const metadata = {
  title: '%(title)s',
  description: '%(description)s',
}

export default function RootLayout({
  children,
}: {
  children: React.ReactNode
}) {
  return (
    <html lang="en">
      <body>{children}</body>
    </html>
  )
}
"""

PAGE_TSX = """export default function Home() {
  return (
    <main className="flex min-h-screen items-center justify-center">
      <h1 className="text-2xl font-bold">%(title)s</h1>
    </main>
  )
}
"""

TSCONFIG = {
    "compilerOptions": {
        "target": "es5",
        "lib": ["dom", "dom.iterable", "es6"],
        "allowJs": True,
        "skipLibCheck": True,
        "strict": True,
        "noEmit": True,
        "esModuleInterop": True,
        "module": "esnext",
        "moduleResolution": "bundler",
        "resolveJsonModule": True,
        "isolatedModules": True,
        "jsx": "preserve",
        "incremental": True,
        "plugins": [{"name": "next"}],
        "baseUrl": ".",
        "paths": {"@/*": ["./*"]},
    },
    "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
    "exclude": ["node_modules"],
}


def package_name(project_name: str) -> str:
    """npm-safe package name: lowercase, dashes, no leading dot or underscore."""
    name = re.sub(r"[^a-z0-9._-]+", "-", (project_name or "").strip().lower()).strip("-._")
    return name or "frontend"


def package_json(framework: str, project_name: str) -> dict:
    """A minimal ``package.json`` for ``next`` or ``react``."""
    name = package_name(project_name)
    if framework == "next":
        return {
            "name": name,
            "version": "0.1.0",
            "private": True,
            "scripts": {"dev": "next dev", "build": "next build", "start": "next start", "lint": "next lint"},
            "dependencies": {
                "next": NEXT_VERSION,
                "react": "^18",
                "react-dom": "^18",
                "@types/node": "^20",
                "@types/react": "^18",
                "@types/react-dom": "^18",
                "typescript": "^5",
            },
            "devDependencies": {"tailwindcss": "^3.3.0", "autoprefixer": "^10.4.16", "postcss": "^8.4.31"},
        }
    return {
        "name": name,
        "version": "0.1.0",
        "private": True,
        "scripts": {"start": "react-scripts start", "build": "react-scripts build"},
        "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0", "react-scripts": "5.0.1"},
        "browserslist": {"production": [">0.2%", "not dead"], "development": ["last 1 chrome version"]},
    }


def nextjs_scaffold(project_name: str, description: str = "") -> Dict[str, str]:
    """Tooling files for a Next.js app router project, keyed by relative path.

    Generated application files are written over these, so only the
    tooling and a placeholder page are provided.
    """
    title = (project_name or "Next.js App").replace("'", "")
    desc = (description or "Generated full-stack application").replace("'", "").replace("\n", " ")
    return {
        "package.json": json.dumps(package_json("next", project_name), indent=2),
        "tailwind.config.js": TAILWIND_CONFIG,
        "postcss.config.js": POSTCSS_CONFIG,
        "tsconfig.json": json.dumps(TSCONFIG, indent=2),
        "next.config.js": NEXT_CONFIG,
        "app/globals.css": GLOBALS_CSS,
        "app/layout.tsx": LAYOUT_TSX % {"title": title, "description": desc[:160]},
        "app/page.tsx": PAGE_TSX % {"title": title},
    }
