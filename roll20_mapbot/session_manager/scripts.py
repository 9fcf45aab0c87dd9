"""JavaScript evaluated inside the Roll20 editor page."""

# Renders the whole active page at 100% zoom by scrolling the editor over the
# game canvas chunk by chunk, stitches the chunks into one canvas, paints the
# token nameplates over it and triggers a browser download of it as map.png.
# Resolves once the download link has been clicked; rejects if the canvas
# cannot be rendered.
EXPORT_MAP_SCRIPT = """
async () => {
    const GRID_CELL = 70;
    const FRAME_RETRIES = 10;

    const nextFrame = () => new Promise(resolve => requestAnimationFrame(resolve));
    const setZoom = (zoom) => {
        const select = document.querySelector('.selZoom');
        if (!select) return;
        const option = Array.from(select.children).find(o => Number(o.value) === zoom);
        if (option) option.click();
    };

    // Token names live in HTML overlays, not on the canvas. Paint them onto the
    // output relative to the largest child of the token properties layer,
    // which spans the page.
    const drawNameplates = (ctx) => {
        const layer = document.querySelector('#token-properties-layer');
        const nameplates = Array.from(document.querySelectorAll('.nameplate'));
        if (!layer || nameplates.length === 0) return;

        let origin = null;
        for (const child of layer.children) {
            const rect = child.getBoundingClientRect();
            if (origin === null || (origin.height < rect.height && origin.width < rect.width)) {
                origin = rect;
            }
        }
        if (origin === null) return;

        const labels = nameplates.map(nameplate => ({
            text: nameplate.innerText,
            rect: nameplate.getBoundingClientRect(),
        }));

        ctx.fillStyle = 'rgba(255, 255, 255, 0.5)';
        for (const { rect } of labels) {
            ctx.fillRect(rect.x - origin.x, rect.y - origin.y, rect.width, rect.height);
        }
        ctx.fillStyle = '#000';
        ctx.textAlign = 'left';
        ctx.textBaseline = 'top';
        ctx.font = '700 14px Arial, sans-serif';
        for (const { text, rect } of labels) {
            ctx.fillText(text, rect.x - origin.x, rect.y - origin.y + 5);
        }
    };

    const previousZoom = Number(document.querySelector('#zoomPercent')?.textContent || '100') || 100;
    const wrapper = document.querySelector('#editor-wrapper');
    const editor = document.querySelector('#editor');
    const canvas = document.querySelector('#babylonCanvas');
    if (!wrapper || !editor || !canvas) {
        throw new Error('editor canvas not found');
    }

    const page = window.Campaign.activePage();
    const width = page.get('width') * GRID_CELL;
    const height = page.get('height') * GRID_CELL;

    const output = document.createElement('canvas');
    output.width = width;
    output.height = height;
    const ctx = output.getContext('2d', { willReadFrequently: true });

    try {
        setZoom(100);
        await nextFrame();
        await nextFrame();

        editor.style.paddingRight = `${canvas.width}px`;
        editor.style.paddingBottom = `${canvas.height}px`;
        const style = getComputedStyle(editor);
        const padTop = parseInt(style.paddingTop, 10);
        const padLeft = parseInt(style.paddingLeft, 10);

        for (let oy = 0; oy < height; oy += canvas.height) {
            for (let ox = 0; ox < width; ox += canvas.width) {
                wrapper.scrollTop = oy + padTop;
                wrapper.scrollLeft = ox + padLeft;
                await nextFrame();

                let rendered = false;
                for (let attempt = 0; attempt <= FRAME_RETRIES && !rendered; attempt++) {
                    window.Campaign.view.render();
                    for (let i = 0; i <= attempt; i++) {
                        await nextFrame();
                    }
                    const x = Math.floor(ox + canvas.parentElement.offsetLeft);
                    const y = Math.floor(oy + canvas.parentElement.offsetTop);
                    ctx.drawImage(canvas, x, y);

                    // blank (transparent) edge rows mean the frame was not drawn yet
                    const span = Math.min(width, canvas.width);
                    const top = ctx.getImageData(x, y, span, 1).data;
                    const bottom = ctx.getImageData(x, Math.min(height - 1, y + canvas.height - 1), span, 1).data;
                    rendered = true;
                    for (let i = 3; i < top.length; i += 4) {
                        if (top[i] === 0 || bottom[i] === 0) {
                            rendered = false;
                            break;
                        }
                    }
                }
                if (!rendered) {
                    throw new Error(`could not render map chunk at ${ox},${oy}`);
                }
            }
        }

        drawNameplates(ctx);
    } finally {
        editor.style.paddingRight = null;
        editor.style.paddingBottom = null;
        setZoom(previousZoom);
    }

    const link = document.createElement('a');
    link.href = output.toDataURL('image/png');
    link.download = 'map.png';
    document.body.appendChild(link);
    link.click();
    link.remove();
    return true;
}
"""
